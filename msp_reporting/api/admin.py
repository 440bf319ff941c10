"""
Admin API: companies, users and the mapping tables behind tenant filtering.

All endpoints require the effective role to be super admin, so an admin who
is impersonating a customer has no admin access until they stop.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from ..core.dependencies import SessionDep, SuperAdminDep, UpstreamDep
from ..models import UserRole
from ..schemas.admin import (
    AvailableDomainResponse,
    ClientMappingRequest,
    CompanyCreate,
    CompanyResponse,
    CompanyUpdate,
    DomainAssignmentRequest,
    DomainAssignmentResponse,
    MappedEntityResponse,
    MappingUpdatedResponse,
    OrgMappingRequest,
    UserCreate,
    UserResponse,
    UserUpdate,
)
from ..schemas.base import SuccessResponse
from ..schemas.inventory import OrganizationResponse
from ..services.admin import (
    AdminError,
    AdminService,
    CreateUserInput,
    DomainAssignmentInput,
    InvalidOperationError,
    MappedEntity,
    NotFoundError,
)

router = APIRouter(prefix="/admin", tags=["admin"])


def _raise_for(e: AdminError):
    if isinstance(e, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, InvalidOperationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    raise e


# =============================================================================
# COMPANIES
# =============================================================================


@router.get("/companies", response_model=list[CompanyResponse])
async def list_companies(ctx: SuperAdminDep, session: SessionDep):
    """Companies with their HaloPSA client and NinjaOne org mappings."""
    companies = await AdminService(session).list_companies()
    return [CompanyResponse.model_validate(c) for c in companies]


@router.post(
    "/companies",
    response_model=CompanyResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_company(request: CompanyCreate, ctx: SuperAdminDep, session: SessionDep):
    try:
        company = await AdminService(session).create_company(request.name, request.logo_url)
    except AdminError as e:
        _raise_for(e)
    response = CompanyResponse(id=company.id, name=company.name, logo_url=company.logo_url)
    await session.commit()
    return response


@router.put("/companies/{company_id}", response_model=CompanyResponse)
async def update_company(
    company_id: UUID,
    request: CompanyUpdate,
    ctx: SuperAdminDep,
    session: SessionDep,
):
    try:
        company = await AdminService(session).update_company(
            company_id, name=request.name, logo_url=request.logo_url
        )
    except AdminError as e:
        _raise_for(e)
    response = CompanyResponse(id=company.id, name=company.name, logo_url=company.logo_url)
    await session.commit()
    return response


@router.delete("/companies/{company_id}", response_model=SuccessResponse)
async def delete_company(company_id: UUID, ctx: SuperAdminDep, session: SessionDep):
    """Delete a company. Refused while users are still assigned to it."""
    try:
        await AdminService(session).delete_company(company_id)
    except AdminError as e:
        _raise_for(e)
    await session.commit()
    return SuccessResponse()


@router.get("/companies/available-clients", response_model=list[MappedEntityResponse])
async def list_available_clients(ctx: SuperAdminDep, session: SessionDep):
    """Synced HaloPSA clients that can be mapped to a company."""
    clients = await AdminService(session).list_available_clients()
    return [MappedEntityResponse.model_validate(c) for c in clients]


@router.get("/companies/available-orgs", response_model=list[OrganizationResponse])
async def list_available_orgs(ctx: SuperAdminDep, upstream: UpstreamDep):
    """NinjaOne organizations that can be mapped to a company."""
    if upstream.ninjaone is None:
        return []
    orgs = await upstream.ninjaone.get_organizations()
    return [OrganizationResponse.model_validate(o) for o in orgs]


@router.put("/companies/{company_id}/clients", response_model=MappingUpdatedResponse)
async def set_client_mappings(
    company_id: UUID,
    request: ClientMappingRequest,
    ctx: SuperAdminDep,
    session: SessionDep,
):
    """Replace the company's HaloPSA client mappings."""
    try:
        count = await AdminService(session).set_client_mappings(company_id, request.client_ids)
    except AdminError as e:
        _raise_for(e)
    await session.commit()
    return MappingUpdatedResponse(count=count)


@router.put("/companies/{company_id}/organizations", response_model=MappingUpdatedResponse)
async def set_org_mappings(
    company_id: UUID,
    request: OrgMappingRequest,
    ctx: SuperAdminDep,
    session: SessionDep,
):
    """Replace the company's NinjaOne organization mappings."""
    orgs = [MappedEntity(id=o.id, name=o.name) for o in request.organizations]
    try:
        count = await AdminService(session).set_org_mappings(company_id, orgs)
    except AdminError as e:
        _raise_for(e)
    await session.commit()
    return MappingUpdatedResponse(count=count)


# =============================================================================
# USERS
# =============================================================================


@router.get("/users", response_model=list[UserResponse])
async def list_users(ctx: SuperAdminDep, session: SessionDep):
    users = await AdminService(session).list_users()
    return [UserResponse.model_validate(u) for u in users]


@router.get("/users/{user_id}", response_model=UserResponse)
async def get_user(user_id: UUID, ctx: SuperAdminDep, session: SessionDep):
    try:
        user = await AdminService(session).get_user(user_id)
    except AdminError as e:
        _raise_for(e)
    return UserResponse.model_validate(user)


@router.post(
    "/users",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_user(request: UserCreate, ctx: SuperAdminDep, session: SessionDep):
    """Create a user profile and its company memberships."""
    try:
        user = await AdminService(session).create_user(
            CreateUserInput(
                email=request.email,
                full_name=request.full_name,
                role=UserRole(request.role),
                company_ids=request.company_ids,
                password=request.password,
            )
        )
    except AdminError as e:
        _raise_for(e)
    await session.commit()
    return UserResponse.model_validate(user)


@router.put("/users/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: UUID,
    request: UserUpdate,
    ctx: SuperAdminDep,
    session: SessionDep,
):
    try:
        user = await AdminService(session).update_user(
            user_id,
            full_name=request.full_name,
            role=UserRole(request.role) if request.role is not None else None,
            company_ids=request.company_ids,
        )
    except AdminError as e:
        _raise_for(e)
    await session.commit()
    return UserResponse.model_validate(user)


@router.delete("/users/{user_id}", response_model=SuccessResponse)
async def delete_user(user_id: UUID, ctx: SuperAdminDep, session: SessionDep):
    if user_id == ctx.user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot delete your own account",
        )
    try:
        await AdminService(session).delete_user(user_id)
    except AdminError as e:
        _raise_for(e)
    await session.commit()
    return SuccessResponse()


# =============================================================================
# DOMAIN ASSIGNMENTS
# =============================================================================


@router.get("/domain-assignments", response_model=list[DomainAssignmentResponse])
async def list_domain_assignments(ctx: SuperAdminDep, session: SessionDep):
    rows = await AdminService(session).list_domain_assignments()
    return [DomainAssignmentResponse.model_validate(r) for r in rows]


@router.get(
    "/domain-assignments/available",
    response_model=list[AvailableDomainResponse],
)
async def list_available_domains(
    ctx: SuperAdminDep, session: SessionDep, upstream: UpstreamDep
):
    """Every 20i domain with the company it is assigned to, if any."""
    domains = await AdminService(session, upstream.twentyi).list_available_domains()
    return [AvailableDomainResponse.model_validate(d) for d in domains]


@router.post("/domain-assignments", response_model=MappingUpdatedResponse)
async def assign_domains(
    request: DomainAssignmentRequest,
    ctx: SuperAdminDep,
    session: SessionDep,
):
    """Assign domains to companies, moving any that are already assigned."""
    assignments = [
        DomainAssignmentInput(domain_name=a.domain_name, company_id=a.company_id)
        for a in request.assignments
    ]
    try:
        count = await AdminService(session).assign_domains(assignments)
    except AdminError as e:
        _raise_for(e)
    await session.commit()
    return MappingUpdatedResponse(count=count)


@router.delete("/domain-assignments/{domain_name}", response_model=SuccessResponse)
async def remove_domain_assignment(
    domain_name: str, ctx: SuperAdminDep, session: SessionDep
):
    try:
        await AdminService(session).remove_domain_assignment(domain_name)
    except AdminError as e:
        _raise_for(e)
    await session.commit()
    return SuccessResponse()


@router.delete(
    "/domain-assignments/company/{company_id}",
    response_model=MappingUpdatedResponse,
)
async def remove_company_domain_assignments(
    company_id: UUID, ctx: SuperAdminDep, session: SessionDep
):
    count = await AdminService(session).remove_company_domain_assignments(company_id)
    await session.commit()
    return MappingUpdatedResponse(count=count)
