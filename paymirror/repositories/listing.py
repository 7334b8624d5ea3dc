"""Entity query services: filtered, sorted, paginated listings."""
from datetime import datetime
from typing import Optional

from paymirror.entities import EntitySpec, get_entity
from paymirror.exceptions import ValidationError
from paymirror.filters import build_predicates, combine
from paymirror.models import ListParams, TenantScope
from paymirror.observability import Timer, get_logger
from paymirror.pagination import Page, PageRequest, paginate
from paymirror.sorting import resolve_sort

logger = get_logger(__name__)


class ListingMixin:

    async def list_entities(
        self,
        scope: TenantScope,
        entity,
        params: Optional[ListParams] = None,
        now: Optional[datetime] = None,
    ) -> Page:
        """
        List one page of an entity collection.

        Args:
            scope: Tenant scope; always the first predicate
            entity: EntitySpec or entity name ("customers", "payments", ...)
            params: Raw list parameters (clamped/validated here)
            now: Reference time for period shorthand

        Returns:
            Page with data, totalCount, totalPages

        Raises:
            ValidationError: If the entity name is unknown
        """
        spec = entity if isinstance(entity, EntitySpec) else get_entity(entity)
        if spec is None:
            raise ValidationError("entity", "Unknown entity", entity)

        params = params or ListParams()
        if params.account_id is not None and scope.sub_account_id is None:
            scope = TenantScope.resolve(scope.tenant_id, params.account_id)

        where_sql, where_params = combine(build_predicates(spec, scope, params, now))
        order = resolve_sort(params.sort, spec.sortable, spec.date_column, spec.id_column)
        request = PageRequest.from_raw(params.page, params.page_size)

        with Timer(f"list_{spec.name}", logger):
            return await paginate(
                self._fetch_one,
                self._fetch_all,
                spec.select_sql(where_sql, order.to_sql()),
                spec.count_sql(where_sql),
                where_params,
                request,
                spec.to_dict,
            )
