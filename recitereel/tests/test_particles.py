"""Tests for app.particles — drifting pool, wrap-around, alpha easing."""

import random

import pytest

from PySide6.QtGui import QImage, QPainter

from app.particles import (
    ALPHA_EASE,
    IDLE_ALPHA_FACTOR,
    WRAP_MARGIN,
    ParticleField,
)


@pytest.fixture
def field() -> ParticleField:
    return ParticleField(200, 400, count=20, rng=random.Random(7))


class TestParticleField:
    def test_pool_size(self, field: ParticleField) -> None:
        assert len(field.particles) == 20

    def test_spawn_ranges(self, field: ParticleField) -> None:
        for p in field.particles:
            assert 0 <= p.x <= 200
            assert 0 <= p.y <= 400
            assert 1 <= p.size <= 4
            assert 0.3 <= p.speed_y <= 1.2
            assert -0.2 <= p.speed_x <= 0.2
            assert 0.3 <= p.max_alpha <= 0.7
            assert p.alpha == 0.0

    def test_drifts_upward(self, field: ParticleField) -> None:
        before = [p.y for p in field.particles]
        field.step(playing=True)
        for y0, p in zip(before, field.particles):
            assert p.y == pytest.approx(y0 - p.speed_y)

    def test_wraps_to_bottom(self, field: ParticleField) -> None:
        p = field.particles[0]
        p.y = -WRAP_MARGIN + 0.1
        field.step(playing=True)
        assert p.y == 400 + WRAP_MARGIN
        assert 0 <= p.x <= 200

    def test_alpha_eases_to_full_when_playing(self, field: ParticleField) -> None:
        field.step(playing=True)
        for p in field.particles:
            assert p.alpha == pytest.approx(p.max_alpha * ALPHA_EASE)

    def test_alpha_dimmed_when_idle(self, field: ParticleField) -> None:
        for _ in range(400):
            field.step(playing=False)
        for p in field.particles:
            assert p.alpha == pytest.approx(p.max_alpha * IDLE_ALPHA_FACTOR, rel=1e-3)

    def test_pool_recycled_in_place(self, field: ParticleField) -> None:
        ids = [id(p) for p in field.particles]
        for _ in range(1000):
            field.step(playing=True)
        assert [id(p) for p in field.particles] == ids

    def test_same_seed_same_field(self) -> None:
        a = ParticleField(100, 100, count=5, rng=random.Random(3))
        b = ParticleField(100, 100, count=5, rng=random.Random(3))
        assert [(p.x, p.y) for p in a.particles] == [(p.x, p.y) for p in b.particles]

    def test_paint(self, qapp, field: ParticleField) -> None:
        for p in field.particles:
            p.alpha = 1.0
        image = QImage(200, 400, QImage.Format.Format_ARGB32_Premultiplied)
        image.fill(0)
        painter = QPainter(image)
        field.paint(painter)
        painter.end()
        p = field.particles[0]
        assert image.pixelColor(int(p.x), int(p.y)).alpha() > 0
