"""Company scoping for API requests.

Callers name their company in the ``X-Company-ID`` header. Authentication
happens upstream; this only checks that the company exists.
"""

from typing import Annotated

from fastapi import Depends, Header

from vendrun.core.errors import EntityNotFound
from vendrun.db.session import DbSession
from vendrun.models.company import Company


def get_company_id(
    db: DbSession,
    x_company_id: int = Header(..., alias="X-Company-ID"),
) -> int:
    """Resolve the header to an existing company id."""
    company = db.query(Company.id).filter(Company.id == x_company_id).first()
    if not company:
        raise EntityNotFound("Company", x_company_id)
    return x_company_id


CompanyId = Annotated[int, Depends(get_company_id)]
