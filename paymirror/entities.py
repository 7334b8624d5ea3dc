"""
Static per-entity query whitelists.

Each listable entity declares, up front, the only SQL expressions client input
can ever reach: searchable text columns, equality filters (with typed
coercion), sortable columns, joins and the row projection. Nothing here is
derived from client-supplied names.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from paymirror.filters import FilterField
from paymirror.models import UNKNOWN_CUSTOMER, epoch_to_iso
from paymirror.validators import coerce_bool, coerce_int, coerce_lower, coerce_str


def _amount(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


def _list(value: Any) -> list:
    return list(value) if value else []


@dataclass(frozen=True)
class Field:
    """One output column: response key, SQL expression, optional converter."""
    key: str
    expr: str
    convert: Optional[Callable[[Any], Any]] = None


@dataclass(frozen=True)
class EntitySpec:
    name: str
    table: str
    alias: str
    fields: Tuple[Field, ...]
    joins: Tuple[str, ...] = ()
    search_columns: Tuple[str, ...] = ()
    filters: Mapping[str, FilterField] = field(default_factory=dict)
    sortable: Mapping[str, str] = field(default_factory=dict)

    @property
    def tenant_column(self) -> str:
        return f"{self.alias}.tenant_id"

    @property
    def sub_account_column(self) -> str:
        return f"{self.alias}.sub_account_id"

    @property
    def date_column(self) -> str:
        return f"{self.alias}.created"

    @property
    def id_column(self) -> str:
        return f"{self.alias}.processor_id"

    @property
    def from_sql(self) -> str:
        return "\n".join([f"FROM {self.table} {self.alias}", *self.joins])

    def select_sql(self, where_sql: str, order_sql: str) -> str:
        columns = ",\n    ".join(f"{f.expr} AS \"{f.key}\"" for f in self.fields)
        return (
            f"SELECT\n    {columns}\n{self.from_sql}\n"
            f"WHERE {where_sql}\nORDER BY {order_sql}"
        )

    def count_sql(self, where_sql: str) -> str:
        return f"SELECT COUNT(*)\n{self.from_sql}\nWHERE {where_sql}"

    def to_dict(self, row: tuple) -> Dict[str, Any]:
        return {
            f.key: f.convert(value) if f.convert else value
            for f, value in zip(self.fields, row)
        }


# ─── Shared fragments ─────────────────────────────────────────────────────────

def _customer_join(alias: str, owner: str, ref_column: str = "customer_ref") -> str:
    """Tenant-scoped left join to the customer referenced by `owner.ref_column`."""
    return (
        f"LEFT JOIN customers {alias} ON {alias}.tenant_id = {owner}.tenant_id "
        f"AND {alias}.processor_id = {owner}.{ref_column}"
    )


def _customer_fields(alias: str) -> Tuple[Field, ...]:
    return (
        Field("customerName", f"COALESCE({alias}.name, '{UNKNOWN_CUSTOMER}')"),
        Field("customerEmail", f"{alias}.email"),
    )


def _base_fields(alias: str) -> Tuple[Field, ...]:
    return (
        Field("id", f"{alias}.processor_id"),
        Field("accountId", f"{alias}.sub_account_id"),
    )


def _created(alias: str) -> Field:
    return Field("created", f"{alias}.created", epoch_to_iso)


STATUS = coerce_lower
CURRENCY = coerce_lower


# ═══════════════════════════════════════════════════════════════════════════════
# ENTITY DEFINITIONS
# ═══════════════════════════════════════════════════════════════════════════════

# Ungrouped aggregate: exactly one spend row per customer, scoped to its tenant
_CUSTOMER_SPEND_JOIN = """CROSS JOIN LATERAL (
    SELECT
        SUM(pa.amount) FILTER (WHERE pa.status = 'succeeded') AS total_spent,
        arg_max(pa.status, pa.created) AS last_payment_status,
        list_sort(array_agg(DISTINCT pa.payment_method_type)
                  FILTER (WHERE pa.payment_method_type IS NOT NULL)) AS payment_method_types
    FROM payment_attempts pa
    WHERE pa.tenant_id = c.tenant_id
      AND pa.customer_ref = c.processor_id
) spend"""

CUSTOMERS = EntitySpec(
    name="customers",
    table="customers",
    alias="c",
    fields=(
        *_base_fields("c"),
        Field("name", "c.name"),
        Field("email", "c.email"),
        Field("phone", "c.phone"),
        Field("currency", "c.currency"),
        Field("delinquent", "c.delinquent"),
        Field("totalAmountSpent", "COALESCE(spend.total_spent, 0)", _amount),
        Field("lastPaymentStatus", "spend.last_payment_status"),
        Field("paymentMethodTypes", "spend.payment_method_types", _list),
        _created("c"),
    ),
    joins=(_CUSTOMER_SPEND_JOIN,),
    search_columns=("c.name", "c.email", "c.processor_id"),
    filters={
        "email": FilterField("c.email", coerce_str),
        "currency": FilterField("c.currency", CURRENCY),
        "delinquent": FilterField("c.delinquent", coerce_bool),
    },
    sortable={
        "name": "c.name",
        "email": "c.email",
        "created": "c.created",
        "totalAmountSpent": "COALESCE(spend.total_spent, 0)",
    },
)

PRODUCTS = EntitySpec(
    name="products",
    table="products",
    alias="pr",
    fields=(
        *_base_fields("pr"),
        Field("name", "pr.name"),
        Field("description", "pr.description"),
        Field("active", "pr.active"),
        _created("pr"),
    ),
    search_columns=("pr.name", "pr.description", "pr.processor_id"),
    filters={
        "active": FilterField("pr.active", coerce_bool),
    },
    sortable={
        "name": "pr.name",
        "created": "pr.created",
    },
)

PRICES = EntitySpec(
    name="prices",
    table="prices",
    alias="pc",
    fields=(
        *_base_fields("pc"),
        Field("productId", "pc.product_ref"),
        Field("productName", "prod.name"),
        Field("unitAmount", "pc.unit_amount", _amount),
        Field("currency", "pc.currency"),
        Field("interval", "pc.recurring_interval"),
        Field("active", "pc.active"),
        _created("pc"),
    ),
    joins=(
        "LEFT JOIN products prod ON prod.tenant_id = pc.tenant_id "
        "AND prod.processor_id = pc.product_ref",
    ),
    search_columns=("prod.name", "pc.processor_id", "pc.currency"),
    filters={
        "active": FilterField("pc.active", coerce_bool),
        "currency": FilterField("pc.currency", CURRENCY),
        "interval": FilterField("pc.recurring_interval", coerce_lower),
        "product": FilterField("pc.product_ref", coerce_str),
    },
    sortable={
        "unitAmount": "pc.unit_amount",
        "created": "pc.created",
        "productName": "prod.name",
    },
)

SUBSCRIPTIONS = EntitySpec(
    name="subscriptions",
    table="subscriptions",
    alias="s",
    fields=(
        *_base_fields("s"),
        Field("customerId", "s.customer_ref"),
        *_customer_fields("cu"),
        Field("status", "s.status"),
        Field("productName", "prod.name"),
        Field("unitAmount", "pc.unit_amount", _amount),
        Field("currency", "pc.currency"),
        Field("interval", "pc.recurring_interval"),
        Field("currentPeriodEnd", "s.current_period_end", epoch_to_iso),
        Field("cancelAtPeriodEnd", "s.cancel_at_period_end"),
        _created("s"),
    ),
    joins=(
        _customer_join("cu", "s"),
        "LEFT JOIN prices pc ON pc.tenant_id = s.tenant_id AND pc.processor_id = s.price_ref",
        "LEFT JOIN products prod ON prod.tenant_id = s.tenant_id "
        "AND prod.processor_id = pc.product_ref",
    ),
    search_columns=("cu.name", "cu.email", "prod.name", "s.status", "s.processor_id"),
    filters={
        "status": FilterField("s.status", STATUS),
        "customer": FilterField("s.customer_ref", coerce_str),
        "cancelAtPeriodEnd": FilterField("s.cancel_at_period_end", coerce_bool),
    },
    sortable={
        "status": "s.status",
        "created": "s.created",
        "currentPeriodEnd": "s.current_period_end",
        "customerName": "cu.name",
    },
)

INVOICES = EntitySpec(
    name="invoices",
    table="invoices",
    alias="i",
    fields=(
        *_base_fields("i"),
        Field("number", "i.number"),
        Field("customerId", "i.customer_ref"),
        *_customer_fields("cu"),
        Field("status", "i.status"),
        Field("amountDue", "i.amount_due", _amount),
        Field("amountPaid", "i.amount_paid", _amount),
        Field("currency", "i.currency"),
        Field("dueDate", "i.due_date", epoch_to_iso),
        _created("i"),
    ),
    joins=(_customer_join("cu", "i"),),
    search_columns=("i.number", "cu.name", "cu.email", "i.status", "i.processor_id"),
    filters={
        "status": FilterField("i.status", STATUS),
        "currency": FilterField("i.currency", CURRENCY),
        "customer": FilterField("i.customer_ref", coerce_str),
    },
    sortable={
        "number": "i.number",
        "status": "i.status",
        "amountDue": "i.amount_due",
        "dueDate": "i.due_date",
        "created": "i.created",
    },
)

PAYMENTS = EntitySpec(
    name="payments",
    table="payment_attempts",
    alias="p",
    fields=(
        *_base_fields("p"),
        Field("customerId", "p.customer_ref"),
        *_customer_fields("cu"),
        Field("amount", "p.amount", _amount),
        Field("currency", "p.currency"),
        Field("status", "p.status"),
        Field("paymentMethodType", "p.payment_method_type"),
        Field("description", "p.description"),
        _created("p"),
    ),
    joins=(_customer_join("cu", "p"),),
    search_columns=("p.processor_id", "p.description", "cu.name", "cu.email", "p.status", "p.currency"),
    filters={
        "status": FilterField("p.status", STATUS),
        "currency": FilterField("p.currency", CURRENCY),
        "customer": FilterField("p.customer_ref", coerce_str),
        "paymentMethodType": FilterField("p.payment_method_type", coerce_lower),
    },
    sortable={
        "amount": "p.amount",
        "status": "p.status",
        "currency": "p.currency",
        "created": "p.created",
        "customerName": "cu.name",
    },
)

CHARGES = EntitySpec(
    name="charges",
    table="charges",
    alias="ch",
    fields=(
        *_base_fields("ch"),
        Field("paymentIntentId", "ch.payment_attempt_ref"),
        Field("customerId", "ch.customer_ref"),
        *_customer_fields("cu"),
        Field("amount", "ch.amount", _amount),
        Field("currency", "ch.currency"),
        Field("status", "ch.status"),
        Field("description", "ch.description"),
        _created("ch"),
    ),
    joins=(_customer_join("cu", "ch"),),
    search_columns=("ch.processor_id", "ch.description", "cu.name", "cu.email", "ch.status"),
    filters={
        "status": FilterField("ch.status", STATUS),
        "currency": FilterField("ch.currency", CURRENCY),
        "customer": FilterField("ch.customer_ref", coerce_str),
    },
    sortable={
        "amount": "ch.amount",
        "status": "ch.status",
        "created": "ch.created",
    },
)

REFUNDS = EntitySpec(
    name="refunds",
    table="refunds",
    alias="r",
    fields=(
        *_base_fields("r"),
        Field("chargeId", "r.charge_ref"),
        Field("paymentIntentId", "r.payment_attempt_ref"),
        Field("amount", "r.amount", _amount),
        Field("currency", "r.currency"),
        Field("status", "r.status"),
        Field("reason", "r.reason"),
        _created("r"),
    ),
    search_columns=("r.processor_id", "r.reason", "r.status", "r.charge_ref"),
    filters={
        "status": FilterField("r.status", STATUS),
        "currency": FilterField("r.currency", CURRENCY),
        "reason": FilterField("r.reason", coerce_lower),
        "charge": FilterField("r.charge_ref", coerce_str),
    },
    sortable={
        "amount": "r.amount",
        "status": "r.status",
        "created": "r.created",
    },
)

PAYOUTS = EntitySpec(
    name="payouts",
    table="payouts",
    alias="po",
    fields=(
        *_base_fields("po"),
        Field("amount", "po.amount", _amount),
        Field("currency", "po.currency"),
        Field("status", "po.status"),
        Field("method", "po.method"),
        Field("arrivalDate", "po.arrival_date", epoch_to_iso),
        _created("po"),
    ),
    search_columns=("po.processor_id", "po.status", "po.method"),
    filters={
        "status": FilterField("po.status", STATUS),
        "currency": FilterField("po.currency", CURRENCY),
        "method": FilterField("po.method", coerce_lower),
    },
    sortable={
        "amount": "po.amount",
        "status": "po.status",
        "arrivalDate": "po.arrival_date",
        "created": "po.created",
    },
)

COUPONS = EntitySpec(
    name="coupons",
    table="coupons",
    alias="co",
    fields=(
        *_base_fields("co"),
        Field("name", "co.name"),
        Field("percentOff", "co.percent_off", _amount),
        Field("amountOff", "co.amount_off", _amount),
        Field("currency", "co.currency"),
        Field("duration", "co.duration"),
        Field("valid", "co.valid"),
        Field("timesRedeemed", "co.times_redeemed"),
        _created("co"),
    ),
    search_columns=("co.name", "co.processor_id"),
    filters={
        "valid": FilterField("co.valid", coerce_bool),
        "duration": FilterField("co.duration", coerce_lower),
        "timesRedeemed": FilterField("co.times_redeemed", coerce_int),
    },
    sortable={
        "name": "co.name",
        "percentOff": "co.percent_off",
        "timesRedeemed": "co.times_redeemed",
        "created": "co.created",
    },
)

DISPUTES = EntitySpec(
    name="disputes",
    table="disputes",
    alias="d",
    fields=(
        *_base_fields("d"),
        Field("chargeId", "d.charge_ref"),
        *_customer_fields("cu"),
        Field("amount", "d.amount", _amount),
        Field("currency", "d.currency"),
        Field("status", "d.status"),
        Field("reason", "d.reason"),
        _created("d"),
    ),
    joins=(
        "LEFT JOIN charges ch ON ch.tenant_id = d.tenant_id AND ch.processor_id = d.charge_ref",
        _customer_join("cu", "ch"),
    ),
    search_columns=("d.processor_id", "d.reason", "d.status", "cu.name"),
    filters={
        "status": FilterField("d.status", STATUS),
        "reason": FilterField("d.reason", coerce_lower),
        "currency": FilterField("d.currency", CURRENCY),
    },
    sortable={
        "amount": "d.amount",
        "status": "d.status",
        "created": "d.created",
    },
)


ENTITIES: Dict[str, EntitySpec] = {
    spec.name: spec
    for spec in (
        CUSTOMERS, PRODUCTS, PRICES, SUBSCRIPTIONS, INVOICES,
        PAYMENTS, CHARGES, REFUNDS, PAYOUTS, COUPONS, DISPUTES,
    )
}

ENTITY_ALIASES = {
    "payment_intents": "payments",
    "payment-intents": "payments",
    "payment_attempts": "payments",
    "payment-attempts": "payments",
}


def get_entity(name: str) -> Optional[EntitySpec]:
    """Look up an entity spec by name or alias; None if unknown."""
    if not isinstance(name, str):
        return None
    key = name.strip().lower()
    return ENTITIES.get(ENTITY_ALIASES.get(key, key))
