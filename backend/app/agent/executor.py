"""
Tool Executor — the only path from a model tool call to a catalog mutation.

SAFETY MODEL:
- Tool names are dispatched through a typed registry; anything else is UNKNOWN_TOOL
- Arguments are validated by pydantic models before a handler runs
- Every product name is re-resolved against the live snapshot; the model's
  spelling is never trusted as an id
- Destructive bulk operations (delete all, bulk price change) only return a
  confirmation preview; they run after the user accepts

SUPPORTED TOOLS:
- add_product / bulk_add_products
- update_product / bulk_update_products (price, stock, name, discount + timer)
- delete_product / bulk_delete_by_names / bulk_delete_all / bulk_delete_except
- list_products / search_product / get_product_info
- record_sale
- bulk_update_prices

Every handler returns a ToolCallResult; catalog failures become API_ERROR
results, they are never raised to the caller.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from pydantic import ValidationError

from ai.tools import (
    AddProductArgs,
    BulkAddProductsArgs,
    BulkDeleteAllArgs,
    BulkDeleteByNamesArgs,
    BulkDeleteExceptArgs,
    BulkUpdatePricesArgs,
    BulkUpdateProductsArgs,
    DeleteProductArgs,
    GetProductInfoArgs,
    ListProductsArgs,
    ProductUpdates,
    RecordSaleArgs,
    SearchProductArgs,
    ToolArgs,
    ToolName,
    UpdateProductArgs,
)
from app.core.exceptions import CatalogAPIError
from app.schemas.catalog import Product
from app.schemas.command import CommandContext
from app.schemas.session import PendingConfirmation, PendingKind
from app.schemas.tool_result import ErrorCode, ToolCallResult
from app.services.catalog_client import CatalogClient, get_catalog_client
from app.services.duration import format_duration, parse_duration, parse_expiry
from app.services.pricing import apply_multiplier, discounted_price, price_multiplier
from app.services.product_resolver import (
    LOOSE_THRESHOLD,
    STRICT_THRESHOLD,
    resolve_product,
    score_products,
    search_products,
)
from app.agent import response_synthesizer

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 3
DEFAULT_STOCK = 1
# Stand-in price when the user did not give one; the owner fixes it later
PLACEHOLDER_PRICE = 0.01
MIN_BULK_PERCENT = 0.1
MAX_BULK_PERCENT = 100
PREVIEW_PRODUCTS = 3


class ToolValidationError(Exception):
    """Arguments are well-formed but semantically invalid."""

    def __init__(self, message: str, field: Optional[str] = None, hint: Optional[str] = None, **details):
        super().__init__(message)
        self.message = message
        self.field = field
        self.hint = hint
        self.details = details

    def to_result(self) -> ToolCallResult:
        return ToolCallResult.fail(
            ErrorCode.VALIDATION_ERROR, self.message, field=self.field, hint=self.hint, **self.details
        )


@dataclass
class UpdatePlan:
    """Payload for the catalog API plus a human-readable change log."""
    payload: Dict[str, Any] = field(default_factory=dict)
    changes: Dict[str, Dict[str, Any]] = field(default_factory=dict)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _product_data(product: Product) -> dict:
    return product.model_dump(mode="json")


def plan_product_update(product: Product, updates: ProductUpdates, now: Optional[datetime] = None) -> UpdatePlan:
    """
    Turn requested field changes into a catalog payload.

    Price and discount rules:
    - discount > 0: price = base * (1 - p/100), base = new price or stored original or current
    - discount == 0: price restored (new price, else original, else current), discount cleared
    - price only while a discount is active: discount is cleared
    - discount_expires_at needs discount_percentage in the same request

    Raises:
        ToolValidationError: invalid combination or value
    """
    now = now or _now()
    if updates.is_empty():
        raise ToolValidationError(
            "No fields to update",
            hint="Specify at least one field: name, price, stock_quantity, discount_percentage or discount_expires_at",
        )

    plan = UpdatePlan()
    current_price = float(product.price)
    original = product.original_price if product.original_price and product.original_price > 0 else None
    base_without_override = original if original is not None else current_price
    new_price = updates.price
    percent = updates.discount_percentage
    raw_expiry = updates.discount_expires_at if updates.discount_expires_at not in (None, "") else None

    if updates.name:
        plan.payload["name"] = updates.name
        plan.changes["name"] = {"old": product.name, "new": updates.name}

    if updates.stock_quantity is not None:
        if updates.stock_quantity < 0:
            raise ToolValidationError(
                "Stock quantity must be zero or a positive integer", field="stock_quantity",
                value=updates.stock_quantity,
            )
        plan.payload["stock_quantity"] = updates.stock_quantity
        plan.changes["stock_quantity"] = {"old": product.stock_quantity, "new": updates.stock_quantity}

    if percent is not None and (percent < 0 or percent > 100):
        raise ToolValidationError(
            "Discount percentage must be between 0 and 100", field="discount_percentage", value=percent
        )

    if percent is None and raw_expiry is not None:
        raise ToolValidationError(
            "Provide discount_percentage together with discount_expires_at", field="discount_expires_at"
        )

    expires_at = None
    if raw_expiry is not None:
        try:
            expires_at = parse_expiry(raw_expiry, now)
        except ValueError:
            raise ToolValidationError(
                "Invalid discount expiration format", field="discount_expires_at",
                hint='Use ISO datetime or duration like "6 часов"', value=raw_expiry,
            )

    if new_price is not None and new_price <= 0:
        raise ToolValidationError("Price must be greater than 0", field="price", value=new_price)

    price_assigned = False
    if percent is not None:
        if percent == 0:
            restored = new_price if new_price is not None else base_without_override
            plan.payload.update(
                discount_percentage=0, discount_expires_at=None, original_price=None, price=restored
            )
            price_assigned = True
            if restored != current_price:
                plan.changes["price"] = {"old": current_price, "new": restored}
            plan.changes["discount_percentage"] = {"old": product.discount_percentage, "new": 0}
            if product.discount_expires_at is not None:
                plan.changes["discount_expires_at"] = {"old": product.discount_expires_at.isoformat(), "new": None}
        else:
            base = new_price if new_price is not None else base_without_override
            if base <= 0:
                raise ToolValidationError(
                    "Base price is required to apply discount", field="price",
                    hint="Specify price or make sure product has original price",
                )
            price = discounted_price(base, percent)
            plan.payload.update(
                price=price,
                original_price=base,
                discount_percentage=percent,
                discount_expires_at=expires_at.isoformat() if expires_at else None,
            )
            price_assigned = True
            plan.changes["discount_percentage"] = {"old": product.discount_percentage, "new": percent}
            if expires_at is not None:
                plan.changes["discount_expires_at"] = {
                    "old": product.discount_expires_at.isoformat() if product.discount_expires_at else None,
                    "new": expires_at.isoformat(),
                }
            if price != current_price:
                plan.changes["price"] = {"old": current_price, "new": price}

    if not price_assigned and new_price is not None:
        plan.payload["price"] = new_price
        plan.changes["price"] = {"old": current_price, "new": new_price}
        if product.has_discount():
            plan.payload.update(discount_percentage=0, discount_expires_at=None, original_price=None)
            plan.changes["discount_percentage"] = {"old": product.discount_percentage, "new": 0}
            if product.discount_expires_at is not None:
                plan.changes["discount_expires_at"] = {"old": product.discount_expires_at.isoformat(), "new": None}

    return plan


class ToolExecutor:
    """Validates, resolves and executes one tool call against one catalog snapshot."""

    def __init__(self, catalog: Optional[CatalogClient] = None, clock: Callable[[], datetime] = _now):
        self.catalog = catalog or get_catalog_client()
        self.clock = clock
        self.registry: Dict[ToolName, Tuple[Type[ToolArgs], Callable[[Any, CommandContext], ToolCallResult]]] = {
            ToolName.ADD_PRODUCT: (AddProductArgs, self.add_product),
            ToolName.BULK_ADD_PRODUCTS: (BulkAddProductsArgs, self.bulk_add_products),
            ToolName.UPDATE_PRODUCT: (UpdateProductArgs, self.update_product),
            ToolName.BULK_UPDATE_PRODUCTS: (BulkUpdateProductsArgs, self.bulk_update_products),
            ToolName.DELETE_PRODUCT: (DeleteProductArgs, self.delete_product),
            ToolName.BULK_DELETE_BY_NAMES: (BulkDeleteByNamesArgs, self.bulk_delete_by_names),
            ToolName.BULK_DELETE_ALL: (BulkDeleteAllArgs, self.bulk_delete_all),
            ToolName.BULK_DELETE_EXCEPT: (BulkDeleteExceptArgs, self.bulk_delete_except),
            ToolName.LIST_PRODUCTS: (ListProductsArgs, self.list_products),
            ToolName.SEARCH_PRODUCT: (SearchProductArgs, self.search_product),
            ToolName.GET_PRODUCT_INFO: (GetProductInfoArgs, self.get_product_info),
            ToolName.RECORD_SALE: (RecordSaleArgs, self.record_sale),
            ToolName.BULK_UPDATE_PRICES: (BulkUpdatePricesArgs, self.bulk_update_prices),
        }

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def execute(self, tool_name: str, arguments: Optional[dict], context: CommandContext) -> ToolCallResult:
        try:
            name = ToolName(tool_name)
        except ValueError:
            logger.warning(f"[Executor] Unknown tool requested: {tool_name}")
            return ToolCallResult.fail(ErrorCode.UNKNOWN_TOOL, f"Unknown tool: {tool_name}")

        args_model, handler = self.registry[name]
        try:
            args = args_model.model_validate(arguments or {})
        except ValidationError as e:
            first = e.errors()[0] if e.errors() else {}
            field_name = ".".join(str(part) for part in first.get("loc", ())) or None
            logger.info(f"[Executor] Invalid arguments for {name.value}: {e.error_count()} error(s)")
            return ToolCallResult.fail(
                ErrorCode.VALIDATION_ERROR, first.get("msg", "Invalid arguments"), field=field_name
            )

        logger.info(
            f"[Executor] {name.value} shop={context.shop_id} "
            f"clarified={context.clarified_product_id}"
        )
        try:
            return handler(args, context)
        except ToolValidationError as e:
            return e.to_result()
        except CatalogAPIError as e:
            logger.error(f"[Executor] {name.value} failed against catalog: {e}")
            return ToolCallResult.fail(
                ErrorCode.API_ERROR, "Catalog request failed", status_class=e.status_class
            )

    def _resolve(
        self,
        product_name: str,
        context: CommandContext,
        operation: str,
        field_name: str = "product_name",
    ) -> Tuple[Optional[Product], Optional[ToolCallResult]]:
        """(product, None) when resolved, (None, result) for not-found or clarification."""
        if context.clarified_product_id is not None:
            product = context.find_product(context.clarified_product_id)
            if product is not None:
                logger.info(f"[Executor] {operation}: using clarified product {product.id} '{product.name}'")
                return product, None

        if not product_name or not product_name.strip():
            return None, ToolCallResult.fail(ErrorCode.VALIDATION_ERROR, "Product name is required", field=field_name)

        resolution = resolve_product(product_name, context.products, STRICT_THRESHOLD)
        if resolution.is_resolved:
            return resolution.product, None
        if resolution.is_ambiguous:
            return None, ToolCallResult.clarify(operation, product_name, resolution.candidates())
        return None, ToolCallResult.fail(
            ErrorCode.PRODUCT_NOT_FOUND, "Product not found", field=field_name, search_query=product_name
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def _creation_attrs(self, item: AddProductArgs, context: CommandContext) -> dict:
        name = (item.name or "").strip()
        if len(name) < MIN_NAME_LENGTH:
            raise ToolValidationError(
                "Product name must be at least 3 characters", field="name", value=item.name
            )

        price = item.price
        if price is None or price <= 0:
            logger.warning(f"[Executor] No valid price for '{name}' ({price}), using placeholder {PLACEHOLDER_PRICE}")
            price = PLACEHOLDER_PRICE

        stock = DEFAULT_STOCK if item.stock is None else item.stock
        if stock < 0:
            raise ToolValidationError(
                "Stock quantity must be zero or a positive integer", field="stock",
                hint="Например: 1, 5, 10", value=item.stock,
            )

        return {
            "name": name,
            "price": price,
            "currency": "USD",
            "shop_id": context.shop_id,
            "stock_quantity": stock,
        }

    def add_product(self, args: AddProductArgs, context: CommandContext) -> ToolCallResult:
        attrs = self._creation_attrs(args, context)
        created = self.catalog.create_product(attrs, context.token)
        logger.info(f"[Executor] Created product {created.id} '{created.name}'")
        return ToolCallResult.ok("product_created", product=_product_data(created))

    def bulk_add_products(self, args: BulkAddProductsArgs, context: CommandContext) -> ToolCallResult:
        if len(args.products) < 2:
            return ToolCallResult.fail(
                ErrorCode.VALIDATION_ERROR, "Bulk add requires at least 2 products",
                field="products", count=len(args.products),
            )

        successful: List[dict] = []
        failed: List[dict] = []
        for item in args.products:
            try:
                attrs = self._creation_attrs(item, context)
                created = self.catalog.create_product(attrs, context.token)
                successful.append(_product_data(created))
            except ToolValidationError as e:
                failed.append({"name": item.name or "unnamed", "code": ErrorCode.VALIDATION_ERROR.value, "message": e.message})
            except CatalogAPIError as e:
                logger.error(f"[Executor] Bulk add failed for '{item.name}': {e}")
                failed.append({"name": item.name, "code": ErrorCode.API_ERROR.value, "message": "Failed to create product"})

        if not successful:
            return ToolCallResult.fail(
                ErrorCode.BULK_ADD_FAILED, "Failed to add any products",
                total_attempted=len(args.products), failures=failed,
            )

        return ToolCallResult.ok(
            "bulk_products_added",
            total_attempted=len(args.products),
            success_count=len(successful),
            fail_count=len(failed),
            successful=successful,
            failed=failed or None,
        )

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update_product(self, args: UpdateProductArgs, context: CommandContext) -> ToolCallResult:
        if args.updates is None:
            return ToolCallResult.fail(
                ErrorCode.VALIDATION_ERROR, "Updates object is required", field="updates",
                hint="Specify price, name, or stock_quantity to update",
            )
        # Validate fields before resolving so a bad request never asks for clarification
        if args.updates.is_empty():
            return ToolCallResult.fail(
                ErrorCode.VALIDATION_ERROR, "No fields to update",
                hint="Specify at least one field: name, price, stock_quantity, discount_percentage or discount_expires_at",
            )

        product, failure = self._resolve(args.product_name, context, "update")
        if failure is not None:
            return failure

        plan = plan_product_update(product, args.updates, self.clock())
        updated = self.catalog.update_product(product.id, plan.payload, context.token)
        logger.info(f"[Executor] Updated product {product.id}: {sorted(plan.changes)}")
        return ToolCallResult.ok("product_updated", product=_product_data(updated), changes=plan.changes)

    def bulk_update_products(self, args: BulkUpdateProductsArgs, context: CommandContext) -> ToolCallResult:
        if len(args.updates) < 2:
            return ToolCallResult.fail(
                ErrorCode.VALIDATION_ERROR, "Bulk update requires at least 2 products", field="updates"
            )

        updated: List[dict] = []
        failed: List[dict] = []
        for item in args.updates:
            resolution = resolve_product(item.product_name, context.products, STRICT_THRESHOLD)
            if not resolution.is_resolved:
                code = ErrorCode.PRODUCT_NOT_FOUND
                entry = {"name": item.product_name, "code": code.value}
                if resolution.is_ambiguous:
                    entry["message"] = "ambiguous"
                    entry["candidates"] = [c.name for c in resolution.candidates()]
                failed.append(entry)
                continue
            if item.updates is None or item.updates.is_empty():
                failed.append({"name": item.product_name, "code": ErrorCode.VALIDATION_ERROR.value, "message": "No fields to update"})
                continue

            product = resolution.product
            try:
                plan = plan_product_update(product, item.updates, self.clock())
                result = self.catalog.update_product(product.id, plan.payload, context.token)
                updated.append({"product": _product_data(result), "changes": plan.changes})
            except ToolValidationError as e:
                failed.append({"name": product.name, "code": ErrorCode.VALIDATION_ERROR.value, "message": e.message})
            except CatalogAPIError as e:
                logger.error(f"[Executor] Bulk update failed for '{product.name}': {e}")
                failed.append({"name": product.name, "code": ErrorCode.API_ERROR.value, "message": "Failed to update product"})

        if not updated:
            code = ErrorCode(failed[0]["code"]) if failed else ErrorCode.VALIDATION_ERROR
            return ToolCallResult.fail(code, "No products were updated", failures=failed)

        return ToolCallResult.ok(
            "bulk_products_updated",
            updated_count=len(updated),
            updated=updated,
            products=[u["product"] for u in updated],
            failed=failed or None,
        )

    def record_sale(self, args: RecordSaleArgs, context: CommandContext) -> ToolCallResult:
        if args.quantity <= 0:
            return ToolCallResult.fail(
                ErrorCode.VALIDATION_ERROR, "Quantity must be greater than 0", field="quantity", value=args.quantity
            )

        product, failure = self._resolve(args.product_name, context, "record_sale")
        if failure is not None:
            return failure

        current_stock = product.stock_quantity or 0
        if current_stock < args.quantity:
            return ToolCallResult.fail(
                ErrorCode.INSUFFICIENT_STOCK, "Not enough stock available",
                product_name=product.name, requested=args.quantity, available=current_stock,
                shortage=args.quantity - current_stock,
            )

        new_stock = current_stock - args.quantity
        self.catalog.update_product(product.id, {"stock_quantity": new_stock}, context.token)
        return ToolCallResult.ok(
            "sale_recorded",
            product=product.summary(),
            sale={"quantity": args.quantity, "previous_stock": current_stock, "new_stock": new_stock},
        )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete_product(self, args: DeleteProductArgs, context: CommandContext) -> ToolCallResult:
        product, failure = self._resolve(args.product_name, context, "delete")
        if failure is not None:
            return failure

        self.catalog.delete_product(product.id, context.token)
        logger.info(f"[Executor] Deleted product {product.id} '{product.name}'")
        return ToolCallResult.ok("product_deleted", product=product.summary())

    def bulk_delete_by_names(self, args: BulkDeleteByNamesArgs, context: CommandContext) -> ToolCallResult:
        names = [n for n in args.product_names if n and n.strip()]
        if not names:
            return ToolCallResult.fail(
                ErrorCode.VALIDATION_ERROR, "Product names array is required", field="product_names"
            )

        ids: List[int] = []
        found: List[str] = []
        not_found: List[str] = []
        ambiguous: List[dict] = []
        for name in names:
            resolution = resolve_product(name, context.products, STRICT_THRESHOLD)
            if resolution.is_resolved:
                if resolution.product.id not in ids:
                    ids.append(resolution.product.id)
                    found.append(resolution.product.name)
            elif resolution.is_ambiguous:
                ambiguous.append({"query": name, "candidates": [c.name for c in resolution.candidates()]})
            else:
                not_found.append(name)

        if not ids:
            return ToolCallResult.fail(
                ErrorCode.PRODUCTS_NOT_FOUND, "None of the specified products were found",
                searched_names=names, not_found=not_found, ambiguous=ambiguous,
            )

        deleted_count = self.catalog.bulk_delete_by_ids(context.shop_id, ids, context.token)
        return ToolCallResult.ok(
            "bulk_delete_by_names",
            deleted_count=deleted_count,
            deleted_products=found,
            not_found=not_found or None,
            ambiguous=ambiguous or None,
        )

    def bulk_delete_all(self, args: BulkDeleteAllArgs, context: CommandContext) -> ToolCallResult:
        if not args.confirm:
            data = {"affected_count": len(context.products)}
            return ToolCallResult.confirm(
                response_synthesizer.build_confirmation_message(PendingKind.BULK_DELETE_ALL.value, data),
                PendingKind.BULK_DELETE_ALL.value,
                **data,
            )

        logger.warning(f"[Executor] bulk_delete_all confirmed, shop={context.shop_id}")
        deleted_count = self.catalog.bulk_delete_all(context.shop_id, context.token)
        return ToolCallResult.ok("bulk_delete_all", deleted_count=deleted_count)

    def bulk_delete_except(self, args: BulkDeleteExceptArgs, context: CommandContext) -> ToolCallResult:
        keep_names = [n for n in args.keep_product_names if n and n.strip()]
        if not keep_names:
            return ToolCallResult.fail(
                ErrorCode.VALIDATION_ERROR, "Keep list is required", field="keep_product_names"
            )
        if not context.products:
            return ToolCallResult.fail(ErrorCode.NO_PRODUCTS, "Catalog is empty")

        keep_ids = set()
        unmatched: List[str] = []
        for name in keep_names:
            matches = score_products(name, context.products, LOOSE_THRESHOLD)
            if not matches:
                unmatched.append(name)
            keep_ids.update(m.product.id for m in matches)

        # Deleting with a misread keep-list is unrecoverable: abort instead
        if unmatched:
            return ToolCallResult.fail(
                ErrorCode.PRODUCTS_NOT_FOUND, "Some products to keep were not found", not_found=unmatched
            )

        to_delete = [p for p in context.products if p.id not in keep_ids]
        if not to_delete:
            return ToolCallResult.fail(ErrorCode.NO_PRODUCTS, "Nothing left to delete after exclusions")

        deleted_count = self.catalog.bulk_delete_by_ids(
            context.shop_id, [p.id for p in to_delete], context.token
        )
        return ToolCallResult.ok(
            "bulk_delete_except",
            deleted_count=deleted_count,
            deleted_products=[p.name for p in to_delete],
            kept_products=[p.name for p in context.products if p.id in keep_ids],
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def list_products(self, args: ListProductsArgs, context: CommandContext) -> ToolCallResult:
        return ToolCallResult.ok(
            "products_listed",
            total_count=len(context.products),
            products=[_product_data(p) for p in context.products],
        )

    def search_product(self, args: SearchProductArgs, context: CommandContext) -> ToolCallResult:
        if not args.query or not args.query.strip():
            return ToolCallResult.fail(ErrorCode.VALIDATION_ERROR, "Search query is required", field="query")

        matches = search_products(args.query, context.products)
        return ToolCallResult.ok(
            "products_found",
            search_query=args.query,
            total_found=len(matches),
            products=[_product_data(p) for p in matches],
        )

    def get_product_info(self, args: GetProductInfoArgs, context: CommandContext) -> ToolCallResult:
        product, failure = self._resolve(args.product_name, context, "info")
        if failure is not None:
            return failure
        return ToolCallResult.ok("product_info_retrieved", product=_product_data(product))

    # ------------------------------------------------------------------
    # Bulk prices
    # ------------------------------------------------------------------

    def bulk_update_prices(self, args: BulkUpdatePricesArgs, context: CommandContext) -> ToolCallResult:
        """Validate and preview; the change itself runs in execute_bulk_price_update."""
        percentage = args.percentage
        if percentage is None or percentage < MIN_BULK_PERCENT or percentage > MAX_BULK_PERCENT:
            return ToolCallResult.fail(
                ErrorCode.VALIDATION_ERROR, "Percentage must be between 0.1 and 100",
                field="percentage", value=percentage,
            )

        operation = (args.operation or "").lower()
        if operation not in ("increase", "decrease"):
            return ToolCallResult.fail(
                ErrorCode.VALIDATION_ERROR, "Invalid operation", field="operation",
                value=args.operation, allowed=["increase", "decrease"],
            )

        if not context.products:
            return ToolCallResult.fail(ErrorCode.NO_PRODUCTS, "No products available to update prices")

        excluded_ids: List[int] = []
        unmatched: List[str] = []
        for name in args.excluded_products:
            matches = score_products(name, context.products, LOOSE_THRESHOLD)
            if not matches:
                logger.warning(f"[Executor] Excluded product not found: '{name}'")
                unmatched.append(name)
            for match in matches:
                if match.product.id not in excluded_ids:
                    excluded_ids.append(match.product.id)

        duration = None
        if args.duration:
            duration = parse_duration(args.duration)
            if duration is None:
                return ToolCallResult.fail(
                    ErrorCode.VALIDATION_ERROR, "Invalid duration format", field="duration",
                    hint='Use format like "6 hours" or "3 days"', value=args.duration,
                )

        discount_type = args.discount_type.lower() if args.discount_type else None
        if discount_type and discount_type not in ("permanent", "timer"):
            return ToolCallResult.fail(
                ErrorCode.VALIDATION_ERROR, 'discount_type must be "permanent" or "timer"', field="discount_type"
            )

        if operation == "increase":
            discount_type = "permanent"
            duration = None
        else:
            if not discount_type:
                discount_type = "timer" if duration else "permanent"
            if discount_type == "timer" and duration is None:
                return ToolCallResult.fail(
                    ErrorCode.VALIDATION_ERROR, "Provide duration for timer discount", field="duration"
                )
            if discount_type == "permanent":
                duration = None

        to_update = [p for p in context.products if p.id not in excluded_ids]
        if not to_update:
            return ToolCallResult.fail(ErrorCode.NO_PRODUCTS, "No products left to update after exclusions")

        multiplier = price_multiplier(percentage, operation)
        data = {
            "percentage": percentage,
            "operation": operation,
            "multiplier": float(multiplier),
            "affected_count": len(to_update),
            "discount_type": discount_type,
            "duration_ms": duration.milliseconds if duration else None,
            "duration_text": format_duration(duration) if duration else None,
            "excluded_product_ids": excluded_ids,
            "unmatched_exclusions": unmatched,
            "preview_products": [
                {"id": p.id, "name": p.name, "old_price": p.price, "new_price": apply_multiplier(p.price, multiplier)}
                for p in to_update[:PREVIEW_PRODUCTS]
            ],
        }
        return ToolCallResult.confirm(
            response_synthesizer.build_confirmation_message(PendingKind.BULK_PRICE_UPDATE.value, data),
            PendingKind.BULK_PRICE_UPDATE.value,
            **data,
        )

    def execute_bulk_price_update(self, pending: PendingConfirmation, context: CommandContext) -> ToolCallResult:
        """Apply a confirmed bulk price change through the catalog service."""
        if not context.products:
            return ToolCallResult.fail(ErrorCode.NO_PRODUCTS, "No products available to update prices")

        try:
            result = self.catalog.apply_bulk_discount(
                context.shop_id,
                context.token,
                percentage=pending.percentage,
                operation=pending.direction,
                discount_type=pending.discount_type,
                duration_ms=pending.duration_ms,
                excluded_product_ids=pending.excluded_product_ids,
            )
        except CatalogAPIError as e:
            logger.error(f"[Executor] Bulk price update failed: {e}")
            return ToolCallResult.fail(ErrorCode.API_ERROR, "Failed to update prices", status_class=e.status_class)

        decrease = pending.direction == "decrease"
        return ToolCallResult.ok(
            "bulk_update_prices",
            percentage=pending.percentage,
            operation=pending.direction,
            operation_text="Скидка" if decrease else "Наценка",
            operation_symbol="-" if decrease else "+",
            discount_type=pending.discount_type,
            duration_ms=pending.duration_ms,
            duration_text=pending.duration_text,
            excluded_product_ids=pending.excluded_product_ids,
            updated_count=result.get("productsUpdated", pending.affected_count),
            products=result.get("updatedProducts") or result.get("products") or [],
        )


def pending_from_preview(result: ToolCallResult, original_command: str) -> PendingConfirmation:
    """Build the stored confirmation from a confirmation-required result."""
    data = result.data or {}
    return PendingConfirmation(
        kind=PendingKind(data.get("kind")),
        percentage=data.get("percentage"),
        direction=data.get("operation"),
        multiplier=data.get("multiplier"),
        affected_count=data.get("affected_count", 0),
        discount_type=data.get("discount_type"),
        duration_ms=data.get("duration_ms"),
        duration_text=data.get("duration_text"),
        excluded_product_ids=data.get("excluded_product_ids") or [],
        original_command=original_command,
    )
