"""Shared fixtures for DOA tests."""

from __future__ import annotations

import pytest

from doa.src.models import Approver, BrowseItem
from doa.src.storage import DoaStorage


@pytest.fixture
def memory_store() -> DoaStorage:
    """In-memory DoaStorage with schema initialized."""
    store = DoaStorage(":memory:")
    store.initialize_schema()
    return store


@pytest.fixture
def sample_items() -> list[BrowseItem]:
    """A small slice of the DOA document with typical data defects.

    Contains a trailing-dot code, a self-referencing parent, and a
    misspelled function name.
    """
    return [
        BrowseItem(id=1, code="1", title="Governance", sort_order=1, function_name="Legal"),
        BrowseItem(
            id=2,
            code="1.1",
            title="Board matters",
            parent_code="1",
            sort_order=2,
            function_name="Legal",
            approvers=[
                Approver(role="BOD", action="X"),
                Approver(role="CEO", action="E1"),
            ],
        ),
        BrowseItem(id=3, code="2", title="Human capital", sort_order=3),
        BrowseItem(
            id=4,
            code="2.1.",
            title="Hiring plan",
            parent_code="2",
            sort_order=4,
            function_name="Human Recourses",
            description="Annual recruitment budget",
            approvers=[
                Approver(role="HR Director", action="I"),
                Approver(role="CFO", action="R1"),
                Approver(role="CEO", action="X1"),
            ],
        ),
        BrowseItem(
            id=5,
            code="2.2",
            title="Salary review",
            parent_code="2.2",
            sort_order=5,
            function_name="Human Resources",
            comments="R&D staff included",
        ),
    ]
