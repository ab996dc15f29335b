from typing import Annotated
import logging

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from school_crm.config import settings
from school_crm.core.module_decorators import require_module
from school_crm.database import get_db
from school_crm.models.tenant import Tenant


logger = logging.getLogger(__name__)


# Type aliases for cleaner dependency injection
DB = Annotated[AsyncSession, Depends(get_db)]

# Tenant with the commission module enabled
CommissionTenant = Annotated[Tenant, Depends(require_module(settings.COMMISSION_MODULE_CODE))]
