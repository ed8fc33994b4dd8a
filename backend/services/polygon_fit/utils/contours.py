"""Contour tracing for binary images."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

import cv2
import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class Contour:
    """Boundary of one blob: outer pixel chain plus the chains around its holes."""

    id: int
    external: np.ndarray
    internal: List[np.ndarray] = field(default_factory=list)


class ContourFinder(Protocol):
    labeled: Optional[np.ndarray]

    def process(self, binary: np.ndarray) -> List[Contour]:
        ...


class BinaryContourFinder:
    """
    Traces every foreground blob of a binary image.

    Any non-zero pixel is foreground. Contours are 8-connected pixel chains
    with no compression (`CHAIN_APPROX_NONE`). The label image is produced
    with `cv2.connectedComponents` using `connect_rule` and each contour takes
    the label of its first pixel as its id.
    """

    def __init__(self, connect_rule: int = 8):
        if connect_rule not in (4, 8):
            raise ValueError(f"connect_rule must be 4 or 8, got {connect_rule}")
        self.connect_rule = connect_rule
        self.labeled: Optional[np.ndarray] = None

    def process(self, binary: np.ndarray) -> List[Contour]:
        mask = (np.asarray(binary) != 0).astype(np.uint8)
        if mask.ndim != 2:
            raise ValueError(f"Binary image must be 2-D, got shape {mask.shape}")

        _, self.labeled = cv2.connectedComponents(mask, connectivity=self.connect_rule, ltype=cv2.CV_32S)
        chains, hierarchy = cv2.findContours(mask, cv2.RETR_CCOMP, cv2.CHAIN_APPROX_NONE)
        if hierarchy is None or len(chains) == 0:
            return []

        links = hierarchy.reshape(-1, 4)
        found: List[Contour] = []
        for i, chain in enumerate(chains):
            # top level entries are outer boundaries, their children are holes
            if links[i][3] != -1:
                continue

            external = chain.reshape(-1, 2).astype(np.int64)
            x, y = external[0]
            contour = Contour(id=int(self.labeled[y, x]), external=external)

            child = links[i][2]
            while child != -1:
                contour.internal.append(chains[child].reshape(-1, 2).astype(np.int64))
                child = links[child][0]
            found.append(contour)

        logger.debug("Traced %d contours", len(found))
        return found
