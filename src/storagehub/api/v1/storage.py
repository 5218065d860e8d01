# src/storagehub/api/v1/storage.py

from fastapi import APIRouter, Body, Query
from fastapi.responses import JSONResponse
from typing import Any, Dict, List
from storagehub.core.context import AppContext
from storagehub.api.dependencies.context import ContextDep
from storagehub.schemas.common import JsonResponse, JsonFaildResponse
from storagehub.schemas.storage_schemas import (
    StorageCreate, StorageRead, StorageCreateResponse, ProvisioningReport, ProvisioningState,
    AccountImportRequest, AccountImportResponse
)
from storagehub.services.storage_service import StorageService
from storagehub.services.exceptions import ConnectionFailed, NotFoundError

router = APIRouter() # /storages

# ==============================================================================
# Storage descriptors
# ==============================================================================

@router.post(
    "/",
    response_model=JsonResponse[StorageCreateResponse],
    summary="Create a storage and provision its tables",
)
async def create_storage(
    storage_data: StorageCreate,
    context: AppContext = ContextDep
):
    result = await StorageService(context).create_storage(storage_data)
    if result.provisioning.state == ProvisioningState.CONNECTION_FAILED:
        # 描述符已保存，不能抛出异常，否则请求事务会回滚
        content = JsonFaildResponse[StorageCreateResponse](
            data=result,
            msg=result.provisioning.error or "Connection failed",
            kind=ConnectionFailed.kind,
            status=ConnectionFailed.status_code,
        )
        return JSONResponse(
            status_code=ConnectionFailed.status_code,
            content=content.model_dump(mode="json", by_alias=True),
        )
    return JsonResponse(data=result)

@router.get("/", response_model=JsonResponse[List[StorageRead]], summary="List storages")
async def list_storages(
    page: int = Query(0, ge=0),
    limit: int = Query(0, ge=0),
    context: AppContext = ContextDep
):
    storages = await StorageService(context).list_storages(page=page, limit=limit)
    return JsonResponse(data=storages)

@router.get("/{storage_id}", response_model=JsonResponse[StorageRead], summary="Get a storage")
async def get_storage(storage_id: str, context: AppContext = ContextDep):
    storage = await StorageService(context).get_storage(storage_id)
    return JsonResponse(data=storage)

@router.get(
    "/{storage_id}/provisioning",
    response_model=JsonResponse[ProvisioningReport],
    summary="Get the provisioning report of a storage created by this process",
)
async def get_provisioning(storage_id: str, context: AppContext = ContextDep):
    service = StorageService(context)
    await service.get_storage(storage_id)
    report = service.get_provisioning(storage_id)
    if report is None:
        raise NotFoundError(f"No provisioning run recorded for storage '{storage_id}'.")
    return JsonResponse(data=report)

# ==============================================================================
# Accounts
# ==============================================================================

@router.post(
    "/{storage_id}/account/import",
    response_model=JsonResponse[AccountImportResponse],
    summary="Import accounts from a remote CSV file",
)
async def import_accounts(
    storage_id: str,
    request: AccountImportRequest,
    context: AppContext = ContextDep
):
    imported = await StorageService(context).import_accounts(storage_id, str(request.url))
    return JsonResponse(data=AccountImportResponse(imported=imported))

@router.get("/{storage_id}/account", response_model=JsonResponse[List[Dict[str, Any]]], summary="Get all accounts")
async def get_all_accounts(storage_id: str, context: AppContext = ContextDep):
    accounts = await StorageService(context).get_all_accounts(storage_id)
    return JsonResponse(data=accounts)

@router.post("/{storage_id}/account", response_model=JsonResponse[Dict[str, Any]], summary="Create or update an account")
async def create_or_update_account(
    storage_id: str,
    body: Dict[str, Any] = Body(...),
    context: AppContext = ContextDep
):
    account = await StorageService(context).create_or_update_account(storage_id, body)
    return JsonResponse(data=account)

@router.get("/{storage_id}/account/{account_id}", response_model=JsonResponse[Dict[str, Any]], summary="Get one account")
async def get_one_account(storage_id: str, account_id: str, context: AppContext = ContextDep):
    account = await StorageService(context).get_one_account(storage_id, account_id)
    return JsonResponse(data=account)

@router.delete("/{storage_id}/account/{account_id}", response_model=JsonResponse[int], summary="Delete one account")
async def delete_one_account(storage_id: str, account_id: str, context: AppContext = ContextDep):
    count = await StorageService(context).delete_one_account(storage_id, account_id)
    return JsonResponse(data=count)

# ==============================================================================
# Tasks
# ==============================================================================

@router.get("/{storage_id}/account/{account_id}/tasks", response_model=JsonResponse[List[Dict[str, Any]]], summary="Get the tasks of an account")
async def get_all_tasks(storage_id: str, account_id: str, context: AppContext = ContextDep):
    tasks = await StorageService(context).get_all_tasks(storage_id, account_id)
    return JsonResponse(data=tasks)

@router.post("/{storage_id}/account/{account_id}/tasks", response_model=JsonResponse[Dict[str, Any]], summary="Create or update a task of an account")
async def create_or_update_task(
    storage_id: str,
    account_id: str,
    body: Dict[str, Any] = Body(...),
    context: AppContext = ContextDep
):
    task = await StorageService(context).create_or_update_task(storage_id, account_id, body)
    return JsonResponse(data=task)

@router.delete("/{storage_id}/account/{account_id}/tasks", response_model=JsonResponse[int], summary="Delete all tasks of an account")
async def delete_all_tasks(storage_id: str, account_id: str, context: AppContext = ContextDep):
    count = await StorageService(context).delete_all_tasks(storage_id, account_id)
    return JsonResponse(data=count)

# ==============================================================================
# Generic tables
# ==============================================================================

@router.get("/{storage_id}/{table_name}/data", response_model=JsonResponse[List[Dict[str, Any]]], summary="Get all records of a table")
async def get_all_data(storage_id: str, table_name: str, context: AppContext = ContextDep):
    records = await StorageService(context).get_all_data(storage_id, table_name)
    return JsonResponse(data=records)

@router.post("/{storage_id}/{table_name}/data", response_model=JsonResponse[Dict[str, Any]], summary="Replace or create a record")
async def create_or_update_data(
    storage_id: str,
    table_name: str,
    body: Dict[str, Any] = Body(...),
    context: AppContext = ContextDep
):
    record = await StorageService(context).create_or_update_data(storage_id, table_name, body)
    return JsonResponse(data=record)

@router.delete("/{storage_id}/{table_name}/data", response_model=JsonResponse[int], summary="Delete all records of a table")
async def delete_all_data(storage_id: str, table_name: str, context: AppContext = ContextDep):
    count = await StorageService(context).delete_all_data(storage_id, table_name)
    return JsonResponse(data=count)

@router.get("/{storage_id}/{table_name}/data/{record_id}", response_model=JsonResponse[Dict[str, Any]], summary="Get one record")
async def get_one_data(storage_id: str, table_name: str, record_id: str, context: AppContext = ContextDep):
    record = await StorageService(context).get_one_data(storage_id, table_name, record_id)
    return JsonResponse(data=record)

@router.delete("/{storage_id}/{table_name}/data/{record_id}", response_model=JsonResponse[int], summary="Delete one record")
async def delete_one_data(storage_id: str, table_name: str, record_id: str, context: AppContext = ContextDep):
    count = await StorageService(context).delete_one_data(storage_id, table_name, record_id)
    return JsonResponse(data=count)
