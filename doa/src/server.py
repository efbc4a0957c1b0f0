"""FastAPI router for the DOA browser.

Exposes REST endpoints for browsing the DOA document as a tree, data
diagnostics, the approval calculator, and admin management of items,
roles, countries, thresholds, users, and settings. Designed to be
mounted at /api/v1/ by the parent application.

All endpoint functions are synchronous (not async) because the
underlying DoaStorage uses synchronous SQLite calls. FastAPI runs
sync handlers in a thread pool automatically.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from doa.src.approvers import normalize_approvers
from doa.src.calculator import ApprovalCalculator, CalculatorInput
from doa.src.hierarchy import BrowseTreeBuilder, collect_function_names, normalize_function
from doa.src.hierarchy.filters import matches_function
from doa.src.models import (
    Approver,
    BrowseItem,
    ContractType,
    Country,
    RiskLevel,
    Role,
    Threshold,
    ThresholdApprover,
    User,
    UserRole,
)
from doa.src.storage import ChildItemsExistError, DoaStorage, DoaStorageError
from doa.src.validation import validate_doa_data
from shared.hardening import ErrorFormatter, InputValidator, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter()

# ---------------------------------------------------------------------------
# Module-level storage instance (initialized by init_doa_storage)
# ---------------------------------------------------------------------------

_storage: DoaStorage | None = None
_calculator: ApprovalCalculator | None = None
_admin_seed_email: str | None = None
_validator = InputValidator()
_formatter = ErrorFormatter()


def init_doa_storage(
    db_path: str | Path = ":memory:",
    admin_seed_email: str | None = None,
) -> DoaStorage:
    """Initialize the DOA storage backend and the approval calculator.

    Call this once at application startup before any requests are served.

    Args:
        db_path: Path to SQLite database file, or ':memory:'.
        admin_seed_email: Users created with this email become admins.

    Returns:
        The initialized DoaStorage instance.
    """
    global _storage, _calculator, _admin_seed_email

    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    # Sync handlers run in a threadpool and share this connection
    _storage = DoaStorage(db_path, check_same_thread=False)
    _storage.initialize_schema()
    _calculator = ApprovalCalculator(_storage)
    _admin_seed_email = admin_seed_email.lower() if admin_seed_email else None

    return _storage


def get_storage() -> DoaStorage:
    """Return the initialized DoaStorage or raise.

    Returns:
        The active DoaStorage instance.

    Raises:
        HTTPException: If storage has not been initialized.
    """
    if _storage is None:
        raise HTTPException(
            status_code=500,
            detail="DOA storage not initialized",
        )
    return _storage


def get_calculator() -> ApprovalCalculator:
    """Return the initialized ApprovalCalculator or raise."""
    if _calculator is None:
        raise HTTPException(status_code=500, detail="DOA storage not initialized")
    return _calculator


def _clear_calculator_cache() -> None:
    if _calculator is not None:
        _calculator.clear_cache()


def _server_error(exc: Exception, component: str) -> HTTPException:
    """Build a 500 response whose detail is safe to show to users."""
    if component == "calculator":
        friendly = _formatter.format_calculator_error(exc)
    elif component == "browse":
        friendly = _formatter.format_browse_error(exc)
    else:
        friendly = _formatter.format_storage_error(exc)
    return HTTPException(status_code=500, detail=friendly.to_dict())


# ---------------------------------------------------------------------------
# Pydantic request/response models
# ---------------------------------------------------------------------------


class ApproverBody(BaseModel):
    """One approval chain entry in a request."""

    role: str = Field(..., min_length=1, max_length=200)
    action: str = Field(..., min_length=1, max_length=20)
    kind: str = ""
    label: str = ""


class BrowseItemCreate(BaseModel):
    """Request body for creating a browse item."""

    code: str = Field(..., min_length=1, max_length=50)
    title: str = Field(..., min_length=1)
    parent_code: str | None = None
    description: str | None = None
    comments: str | None = None
    function_name: str | None = None
    sort_order: int = 0
    approvers: list[ApproverBody] = Field(default_factory=list)


class BrowseItemUpdate(BaseModel):
    """Request body for updating a browse item."""

    code: str | None = Field(default=None, min_length=1, max_length=50)
    title: str | None = Field(default=None, min_length=1)
    parent_code: str | None = None
    description: str | None = None
    comments: str | None = None
    function_name: str | None = None
    sort_order: int | None = None
    approvers: list[ApproverBody] | None = None


class RoleCreate(BaseModel):
    """Request body for creating a role."""

    name: str = Field(..., min_length=1, max_length=200)
    sort_order: int = 0


class RoleUpdate(BaseModel):
    """Request body for updating a role."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    sort_order: int | None = None
    is_active: bool | None = None


class CountryCreate(BaseModel):
    """Request body for creating a country."""

    name: str = Field(..., min_length=1, max_length=200)
    risk_level: str = "safe"


class CountryUpdate(BaseModel):
    """Request body for changing a country's risk level."""

    risk_level: str


class ThresholdApproverBody(BaseModel):
    """One approver entry of a threshold."""

    role: str = Field(..., min_length=1, max_length=200)
    action: str = Field(..., min_length=1, max_length=20)
    label: str = "Approve"
    sort_order: int = 0


class ThresholdCreate(BaseModel):
    """Request body for creating a threshold."""

    threshold_id: str = Field(..., min_length=1, max_length=100)
    type: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1, max_length=50)
    min_value: float | None = None
    max_value: float | None = None
    min_capex: float | None = None
    max_capex: float | None = None
    min_markup: float | None = None
    max_markup: float | None = None
    max_gross_margin: float | None = None
    condition_text: str | None = None
    notes: str | None = None
    sort_order: int = 0
    approvers: list[ThresholdApproverBody] = Field(default_factory=list)


class UserCreate(BaseModel):
    """Request body for creating a user."""

    email: str = Field(..., min_length=3, max_length=300)
    display_name: str = Field(..., min_length=1, max_length=200)
    role: str | None = None


class UserUpdate(BaseModel):
    """Request body for updating a user."""

    role: str | None = None
    is_active: bool | None = None


class SettingUpdate(BaseModel):
    """Request body for setting a JSON value."""

    value: Any


class CalculatorRequest(BaseModel):
    """Request body for an approval evaluation."""

    contract_value: float = 0.0
    capex_value: float = 0.0
    contract_type: str = "standard"
    selected_country: str = ""
    manual_high_risk: bool = False
    gross_margin: float = 100.0
    operating_profit_percent: float = 45.0
    markup_percent: float = 0.0


def _to_approvers(bodies: list[ApproverBody]) -> list[Approver]:
    return [Approver(role=b.role, action=b.action, kind=b.kind, label=b.label) for b in bodies]


def _to_threshold_approvers(bodies: list[ThresholdApproverBody]) -> list[ThresholdApprover]:
    return [
        ThresholdApprover(role=b.role, action=b.action, label=b.label, sort_order=b.sort_order)
        for b in bodies
    ]


def _item_view(item: BrowseItem) -> dict[str, Any]:
    """Item dict with normalized function and sorted approval chain."""
    data = item.to_dict()
    data["function"] = normalize_function(item.function_name)
    data["approvers"] = [a.to_dict() for a in normalize_approvers(item.approvers)]
    return data


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get("/health")
def health_check() -> dict[str, Any]:
    """Return DOA service health status.

    Returns:
        Dict with status, version, and storage availability.
    """
    return {
        "status": "ok",
        "service": "doa",
        "version": "0.1.0",
        "storage_initialized": _storage is not None,
    }


# ---------------------------------------------------------------------------
# Browse
# ---------------------------------------------------------------------------


@router.get("/browse/items")
def list_browse_items(
    search: str = "",
    function_name: str = Query(default="", alias="function"),
) -> dict[str, Any]:
    """List items, optionally filtered, with sorted approval chains.

    Args:
        search: Case-insensitive substring over code/title/description/comments.
        function_name: Normalized function name to match exactly.

    Returns:
        Dict containing list of item dicts.
    """
    try:
        storage = get_storage()
        term = _validator.sanitize_string(search)
        items = storage.get_all_browse_items(search=term or None)
        if function_name:
            items = [item for item in items if matches_function(item, function_name)]
        return {"items": [_item_view(item) for item in items], "count": len(items)}
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "browse") from exc


@router.get("/browse/items/{code}")
def get_browse_item(code: str) -> dict[str, Any]:
    """Get the first item with the given code.

    Args:
        code: DOA item code, e.g. "4.2.3".

    Returns:
        Item dict.
    """
    try:
        storage = get_storage()
        item = storage.get_browse_item_by_code(code)
        if item is None:
            raise HTTPException(status_code=404, detail="Item not found")
        return _item_view(item)
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "browse") from exc


@router.get("/browse/functions")
def list_functions() -> dict[str, Any]:
    """List normalized, deduplicated function names.

    Returns:
        Dict containing sorted function names.
    """
    try:
        storage = get_storage()
        return {"functions": collect_function_names(storage.get_all_functions())}
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "browse") from exc


@router.get("/browse/tree")
def get_browse_tree(
    search: str = "",
    function_name: str = Query(default="", alias="function"),
) -> dict[str, Any]:
    """Build the browse forest.

    Args:
        search: Case-insensitive substring filter.
        function_name: Normalized function name filter.

    Returns:
        Forest dict plus the node keys to auto-expand.
    """
    try:
        storage = get_storage()
        term = _validator.sanitize_string(search)
        items = storage.get_all_browse_items()
        forest = BrowseTreeBuilder.build(items, search=term, function_name=function_name)
        result = forest.to_dict()
        result["expanded_ids"] = sorted(forest.expanded_ids)
        return result
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "browse") from exc


@router.get("/browse/validation")
def get_validation_report() -> dict[str, Any]:
    """Run approval-chain diagnostics over all items.

    Returns:
        Dict with the issue list and count.
    """
    try:
        storage = get_storage()
        issues = validate_doa_data(storage.get_all_browse_items())
        return {"issues": [i.to_dict() for i in issues], "count": len(issues)}
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "browse") from exc


@router.post("/browse/items", status_code=201)
def create_browse_item(body: BrowseItemCreate) -> dict[str, Any]:
    """Create a browse item with its approval chain.

    Args:
        body: Item creation request.

    Returns:
        Created item dict.
    """
    try:
        storage = get_storage()
        item = BrowseItem(
            id=None,
            code=_validator.validate_code(body.code),
            title=body.title,
            parent_code=_validator.validate_code(body.parent_code) if body.parent_code else None,
            description=body.description,
            comments=body.comments,
            function_name=body.function_name,
            sort_order=body.sort_order,
            approvers=_to_approvers(body.approvers),
        )
        storage.create_browse_item(item)
        logger.info("Created browse item %s (%s)", item.id, item.code)
        return _item_view(item)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except DoaStorageError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "storage") from exc


@router.put("/browse/items/{item_id}")
def update_browse_item(item_id: int, body: BrowseItemUpdate) -> dict[str, Any]:
    """Update a browse item.

    Args:
        item_id: The item's ID.
        body: Fields to update; approvers, when given, replace the chain.

    Returns:
        Updated item dict.
    """
    try:
        storage = get_storage()
        item = storage.get_browse_item(item_id)
        if item is None:
            raise HTTPException(status_code=404, detail="Item not found")
        if body.code is not None:
            item.code = _validator.validate_code(body.code)
        if body.title is not None:
            item.title = body.title
        if body.parent_code is not None:
            item.parent_code = _validator.validate_code(body.parent_code)
        if body.description is not None:
            item.description = body.description
        if body.comments is not None:
            item.comments = body.comments
        if body.function_name is not None:
            item.function_name = body.function_name
        if body.sort_order is not None:
            item.sort_order = body.sort_order
        if body.approvers is not None:
            item.approvers = _to_approvers(body.approvers)
        storage.update_browse_item(item)
        logger.info("Updated browse item %s", item_id)
        return _item_view(item)
    except HTTPException:
        raise
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except DoaStorageError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except Exception as exc:
        raise _server_error(exc, "storage") from exc


@router.delete("/browse/items/{item_id}")
def delete_browse_item(item_id: int, cascade: bool = False) -> dict[str, Any]:
    """Delete a browse item by ID.

    Items that other items name as parent are only deleted with
    ``cascade=true``, which removes the whole subtree.

    Args:
        item_id: The item's ID.
        cascade: Also delete the item's descendants.

    Returns:
        Confirmation dict with the number of items removed.
    """
    try:
        storage = get_storage()
        count = storage.delete_browse_item(item_id, cascade=cascade)
        if not count:
            raise HTTPException(status_code=404, detail="Item not found")
        logger.info("Deleted browse item %s (%d items removed)", item_id, count)
        return {"deleted": item_id, "count": count}
    except HTTPException:
        raise
    except ChildItemsExistError as exc:
        raise HTTPException(
            status_code=409,
            detail=f"Cannot delete: item has {exc.count} children. Use ?cascade=true to delete all.",
        ) from exc
    except Exception as exc:
        raise _server_error(exc, "storage") from exc


# ---------------------------------------------------------------------------
# Admin: roles
# ---------------------------------------------------------------------------


@router.get("/admin/roles")
def list_roles() -> dict[str, Any]:
    """List all roles in display order."""
    try:
        storage = get_storage()
        return {"roles": [r.to_dict() for r in storage.get_roles()]}
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "storage") from exc


@router.post("/admin/roles", status_code=201)
def create_role(body: RoleCreate) -> dict[str, Any]:
    """Create a new role.

    Args:
        body: Role creation request.

    Returns:
        Created role dict.
    """
    try:
        storage = get_storage()
        role = storage.create_role(Role(id=None, name=body.name.strip(), sort_order=body.sort_order))
        _clear_calculator_cache()
        logger.info("Created role %s", role.name)
        return role.to_dict()
    except DoaStorageError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "storage") from exc


@router.put("/admin/roles/{role_id}")
def update_role(role_id: int, body: RoleUpdate) -> dict[str, Any]:
    """Update an existing role.

    Args:
        role_id: The role's ID.
        body: Fields to update.

    Returns:
        Updated role dict.
    """
    try:
        storage = get_storage()
        role = storage.get_role(role_id)
        if role is None:
            raise HTTPException(status_code=404, detail="Role not found")
        if body.name is not None:
            role.name = body.name.strip()
        if body.sort_order is not None:
            role.sort_order = body.sort_order
        if body.is_active is not None:
            role.is_active = body.is_active
        storage.update_role(role)
        _clear_calculator_cache()
        return role.to_dict()
    except HTTPException:
        raise
    except DoaStorageError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except Exception as exc:
        raise _server_error(exc, "storage") from exc


@router.delete("/admin/roles/{role_id}")
def delete_role(role_id: int) -> dict[str, Any]:
    """Delete a role that no approval chain uses."""
    try:
        storage = get_storage()
        if not storage.delete_role(role_id):
            raise HTTPException(status_code=404, detail="Role not found")
        _clear_calculator_cache()
        return {"deleted": role_id}
    except HTTPException:
        raise
    except DoaStorageError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except Exception as exc:
        raise _server_error(exc, "storage") from exc


# ---------------------------------------------------------------------------
# Admin: countries
# ---------------------------------------------------------------------------


@router.get("/admin/countries")
def list_countries() -> dict[str, Any]:
    """List all countries with risk levels."""
    try:
        storage = get_storage()
        return {"countries": [c.to_dict() for c in storage.get_countries()]}
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "storage") from exc


@router.post("/admin/countries", status_code=201)
def create_country(body: CountryCreate) -> dict[str, Any]:
    """Create a country.

    Args:
        body: Country creation request.

    Returns:
        Created country dict.
    """
    try:
        storage = get_storage()
        country = Country(id=None, name=body.name.strip(), risk_level=RiskLevel(body.risk_level))
        storage.create_country(country)
        _clear_calculator_cache()
        logger.info("Created country %s (%s)", country.name, country.risk_level.value)
        return country.to_dict()
    except ValueError as exc:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid risk level: {body.risk_level}",
        ) from exc
    except DoaStorageError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "storage") from exc


@router.put("/admin/countries/{country_id}")
def update_country(country_id: int, body: CountryUpdate) -> dict[str, Any]:
    """Change a country's risk level."""
    try:
        storage = get_storage()
        risk_level = RiskLevel(body.risk_level)
        country = storage.update_country_risk(country_id, risk_level)
        _clear_calculator_cache()
        logger.info("Country %s risk level set to %s", country_id, risk_level.value)
        return country.to_dict()
    except HTTPException:
        raise
    except DoaStorageError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid risk level: {body.risk_level}",
        ) from exc
    except Exception as exc:
        raise _server_error(exc, "storage") from exc


@router.delete("/admin/countries/{country_id}")
def delete_country(country_id: int) -> dict[str, Any]:
    """Delete a country by ID."""
    try:
        storage = get_storage()
        if not storage.delete_country(country_id):
            raise HTTPException(status_code=404, detail="Country not found")
        _clear_calculator_cache()
        return {"deleted": country_id}
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "storage") from exc


# ---------------------------------------------------------------------------
# Admin: thresholds
# ---------------------------------------------------------------------------


@router.get("/admin/thresholds")
def list_thresholds() -> dict[str, Any]:
    """List all thresholds with their approvers."""
    try:
        storage = get_storage()
        return {"thresholds": [t.to_dict() for t in storage.get_thresholds()]}
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "storage") from exc


@router.get("/admin/thresholds/{threshold_pk}")
def get_threshold(threshold_pk: int) -> dict[str, Any]:
    """Get a threshold by primary key."""
    try:
        storage = get_storage()
        threshold = storage.get_threshold(threshold_pk)
        if threshold is None:
            raise HTTPException(status_code=404, detail="Threshold not found")
        return threshold.to_dict()
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "storage") from exc


@router.post("/admin/thresholds", status_code=201)
def create_threshold(body: ThresholdCreate) -> dict[str, Any]:
    """Create a threshold.

    Args:
        body: Threshold creation request.

    Returns:
        Created threshold dict.
    """
    try:
        storage = get_storage()
        fields = body.model_dump(exclude={"approvers"})
        threshold = Threshold(
            id=None,
            approvers=_to_threshold_approvers(body.approvers),
            **fields,
        )
        storage.create_threshold(threshold)
        _clear_calculator_cache()
        logger.info("Created threshold %s", threshold.threshold_id)
        return threshold.to_dict()
    except DoaStorageError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "storage") from exc


@router.put("/admin/thresholds/{threshold_pk}")
def update_threshold(threshold_pk: int, body: ThresholdCreate) -> dict[str, Any]:
    """Replace a threshold's fields and approvers."""
    try:
        storage = get_storage()
        existing = storage.get_threshold(threshold_pk)
        if existing is None:
            raise HTTPException(status_code=404, detail="Threshold not found")
        fields = body.model_dump(exclude={"approvers"})
        threshold = Threshold(
            id=threshold_pk,
            approvers=_to_threshold_approvers(body.approvers),
            created_at=existing.created_at,
            **fields,
        )
        storage.update_threshold(threshold)
        _clear_calculator_cache()
        logger.info("Updated threshold %s", threshold.threshold_id)
        return threshold.to_dict()
    except HTTPException:
        raise
    except DoaStorageError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except Exception as exc:
        raise _server_error(exc, "storage") from exc


@router.delete("/admin/thresholds/{threshold_pk}")
def delete_threshold(threshold_pk: int) -> dict[str, Any]:
    """Delete a threshold by primary key."""
    try:
        storage = get_storage()
        if not storage.delete_threshold(threshold_pk):
            raise HTTPException(status_code=404, detail="Threshold not found")
        _clear_calculator_cache()
        return {"deleted": threshold_pk}
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "storage") from exc


# ---------------------------------------------------------------------------
# Admin: users
# ---------------------------------------------------------------------------


@router.get("/admin/users")
def list_users() -> dict[str, Any]:
    """List all users, newest first."""
    try:
        storage = get_storage()
        return {"users": [u.to_dict() for u in storage.list_users()]}
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "storage") from exc


@router.post("/admin/users", status_code=201)
def create_user(body: UserCreate) -> dict[str, Any]:
    """Create a user.

    The configured admin seed email always gets the admin role; other
    users default to viewer.

    Args:
        body: User creation request.

    Returns:
        Created user dict.
    """
    try:
        storage = get_storage()
        email = _validator.validate_email(body.email)
        if _admin_seed_email and email == _admin_seed_email:
            role = UserRole.ADMIN
        else:
            role = UserRole(body.role) if body.role else UserRole.VIEWER
        user = User(id=None, email=email, display_name=body.display_name, role=role)
        storage.create_user(user)
        logger.info("Created user %s with role %s", user.email, user.role.value)
        return user.to_dict()
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid role: {body.role}") from exc
    except DoaStorageError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "storage") from exc


@router.put("/admin/users/{user_id}")
def update_user(user_id: int, body: UserUpdate) -> dict[str, Any]:
    """Change a user's role or active flag."""
    try:
        storage = get_storage()
        user = storage.get_user(user_id)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")
        if body.role is not None:
            user = storage.update_user_role(user_id, UserRole(body.role))
        if body.is_active is not None:
            user = storage.set_user_active(user_id, body.is_active)
        return user.to_dict()
    except HTTPException:
        raise
    except DoaStorageError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid role: {body.role}") from exc
    except Exception as exc:
        raise _server_error(exc, "storage") from exc


@router.delete("/admin/users/{user_id}")
def delete_user(user_id: int) -> dict[str, Any]:
    """Delete a user by ID."""
    try:
        storage = get_storage()
        if not storage.delete_user(user_id):
            raise HTTPException(status_code=404, detail="User not found")
        return {"deleted": user_id}
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "storage") from exc


# ---------------------------------------------------------------------------
# Admin: settings
# ---------------------------------------------------------------------------


@router.get("/admin/settings")
def list_settings() -> dict[str, Any]:
    """List all application settings."""
    try:
        storage = get_storage()
        return {"settings": [s.to_dict() for s in storage.get_all_settings()]}
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "storage") from exc


@router.put("/admin/settings/{key}")
def update_setting(key: str, body: SettingUpdate) -> dict[str, Any]:
    """Insert or replace a JSON setting value."""
    try:
        storage = get_storage()
        setting = storage.set_setting(key, body.value)
        _clear_calculator_cache()
        logger.info("Setting %s updated", key)
        return setting.to_dict()
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "storage") from exc


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------


@router.post("/calculator/evaluate")
def evaluate_approval(body: CalculatorRequest) -> dict[str, Any]:
    """Find the threshold and approval chain for a contract.

    Args:
        body: Contract parameters.

    Returns:
        Calculator result dict.
    """
    try:
        contract_type = ContractType(body.contract_type)
    except ValueError as exc:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid contract type: {body.contract_type}",
        ) from exc

    try:
        calculator = get_calculator()
        data = CalculatorInput(
            contract_value=body.contract_value,
            capex_value=body.capex_value,
            contract_type=contract_type,
            selected_country=body.selected_country,
            manual_high_risk=body.manual_high_risk,
            gross_margin=body.gross_margin,
            operating_profit_percent=body.operating_profit_percent,
            markup_percent=body.markup_percent,
        )
        return calculator.evaluate(data).to_dict()
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "calculator") from exc


@router.get("/calculator/thresholds")
def list_calculator_thresholds() -> dict[str, Any]:
    """List thresholds grouped by type."""
    try:
        calculator = get_calculator()
        grouped = calculator.thresholds_by_type()
        return {
            "thresholds": {
                kind: [t.to_dict() for t in thresholds] for kind, thresholds in grouped.items()
            }
        }
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "calculator") from exc


@router.get("/calculator/thresholds/{kind}")
def list_calculator_thresholds_of_type(kind: str) -> dict[str, Any]:
    """List thresholds of one type; unknown types give an empty list."""
    try:
        calculator = get_calculator()
        thresholds = calculator.thresholds_by_type().get(kind, [])
        return {"type": kind, "thresholds": [t.to_dict() for t in thresholds]}
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "calculator") from exc


@router.get("/calculator/countries")
def list_calculator_countries() -> dict[str, Any]:
    """List countries and their risk levels."""
    try:
        calculator = get_calculator()
        return {"countries": [c.to_dict() for c in calculator.countries().values()]}
    except HTTPException:
        raise
    except Exception as exc:
        raise _server_error(exc, "calculator") from exc
