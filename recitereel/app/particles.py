"""Ambient particle field drawn behind the captions.

A fixed pool of glowing motes drifts upward with a slight sine sway
and wraps back to the bottom edge.  The pool is allocated once and
recycled in place for the whole session.
"""

import math
import random
from dataclasses import dataclass
from typing import List, Optional

from PySide6.QtCore import QPointF, Qt
from PySide6.QtGui import QColor, QPainter

PARTICLE_COUNT = 50
PARTICLE_RGB = (255, 235, 160)
ALPHA_EASE = 0.05
IDLE_ALPHA_FACTOR = 0.3
WRAP_MARGIN = 10.0


@dataclass
class Particle:
    x: float
    y: float
    size: float
    speed_y: float
    speed_x: float
    alpha: float
    max_alpha: float


class ParticleField:
    def __init__(self, width: float, height: float,
                 count: int = PARTICLE_COUNT,
                 rng: Optional[random.Random] = None) -> None:
        self._w = float(width)
        self._h = float(height)
        self._rng = rng or random.Random()
        r = self._rng.uniform
        self.particles: List[Particle] = [
            Particle(
                x=r(0, self._w),
                y=r(0, self._h),
                size=r(1, 4),
                speed_y=r(0.3, 1.2),
                speed_x=r(-0.2, 0.2),
                alpha=0.0,
                max_alpha=r(0.3, 0.7),
            )
            for _ in range(count)
        ]

    def step(self, playing: bool) -> None:
        """Advance every particle by one frame."""
        for p in self.particles:
            p.y -= p.speed_y
            p.x += math.sin(p.y * 0.01) * p.speed_x
            if p.y < -WRAP_MARGIN:
                p.y = self._h + WRAP_MARGIN
                p.x = self._rng.uniform(0, self._w)

            target = p.max_alpha if playing else p.max_alpha * IDLE_ALPHA_FACTOR
            p.alpha += (target - p.alpha) * ALPHA_EASE

    def paint(self, painter: QPainter) -> None:
        painter.save()
        painter.setPen(Qt.PenStyle.NoPen)
        color = QColor(*PARTICLE_RGB)
        for p in self.particles:
            color.setAlphaF(min(max(p.alpha, 0.0), 1.0))
            painter.setBrush(color)
            painter.drawEllipse(QPointF(p.x, p.y), p.size, p.size)
        painter.restore()
