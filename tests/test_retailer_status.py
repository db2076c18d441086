"""Tests for retailer status transitions."""

from datetime import datetime, timedelta

import pytest

from shelfwatch.reliability.retailer_status import (
    InvalidStatusTransition,
    RetailerRecord,
    RetailerStatus,
)
from shelfwatch.utils.slugs import slugify


def test_available_for_crawling():
    assert RetailerStatus.ACTIVE.is_available_for_crawling()
    assert RetailerStatus.DEGRADED.is_available_for_crawling()
    for status in (RetailerStatus.PAUSED, RetailerStatus.DISABLED, RetailerStatus.FAILED):
        assert not status.is_available_for_crawling()


@pytest.mark.parametrize(
    "current,target,allowed",
    [
        (RetailerStatus.ACTIVE, RetailerStatus.FAILED, True),
        (RetailerStatus.DEGRADED, RetailerStatus.FAILED, True),
        (RetailerStatus.FAILED, RetailerStatus.ACTIVE, True),
        (RetailerStatus.FAILED, RetailerStatus.DEGRADED, False),
        (RetailerStatus.PAUSED, RetailerStatus.FAILED, False),
        (RetailerStatus.DISABLED, RetailerStatus.PAUSED, False),
        (RetailerStatus.DISABLED, RetailerStatus.ACTIVE, True),
        (RetailerStatus.PAUSED, RetailerStatus.PAUSED, True),
    ],
)
def test_transitions(current, target, allowed):
    assert current.can_transition_to(target) is allowed
    if allowed:
        assert current.transition_to(target) is target
    else:
        with pytest.raises(InvalidStatusTransition):
            current.transition_to(target)


def test_is_paused():
    now = datetime(2024, 1, 1, 12, 0)
    record = RetailerRecord(slug="bm", name="B&M")
    assert not record.is_paused(now)
    record.paused_until = now + timedelta(minutes=1)
    assert record.is_paused(now)
    assert not record.is_paused(now + timedelta(minutes=1))


@pytest.mark.parametrize(
    "name,slug",
    [("B&M", "bm"), ("Pets at Home", "pets-at-home"), ("Tesco", "tesco"), ("Sainsbury's", "sainsburys")],
)
def test_slugify(name, slug):
    assert slugify(name) == slug
