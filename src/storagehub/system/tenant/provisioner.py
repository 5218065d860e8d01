# src/storagehub/system/tenant/provisioner.py

import asyncio
import logging
from typing import Dict, Optional

from storagehub.engine.tenant import TenantConnectionRegistry, TenantConnectionConfig, TenantConnection
from storagehub.schemas.storage_schemas import (
    StorageDescriptor, TableSchema, ProvisioningReport, ProvisioningState, TableOutcome, SYSTEM_TABLES
)
from storagehub.services.exceptions import ServiceException
from .constants import prefixed_schema
from .metadata import RegistryMetadataStore
from .registry import ModelRegistry

logger = logging.getLogger(__name__)

def connection_config_for(storage: StorageDescriptor) -> TenantConnectionConfig:
    return TenantConnectionConfig(
        engine_type=storage.engine_type.value,
        database=storage.db_name,
        host=storage.db_ip,
        port=storage.db_port,
        username=storage.db_user_name,
        password=storage.db_password,
    )

class ProvisioningRun:
    """
    One provisioning pass over a storage descriptor.
    Every table is materialized by its own task (`tasks`, keyed by physical name);
    `wait()` resolves once all of them have finished, successfully or not.
    """
    def __init__(self, storage: StorageDescriptor):
        self.report = ProvisioningReport(
            storage_id=storage.id,
            tenant_key=storage.tenant_key,
            state=ProvisioningState.CONNECTING,
        )
        self.tasks: Dict[str, asyncio.Task] = {}
        self._completion: Optional[asyncio.Future] = None

    @property
    def storage_id(self) -> str:
        return self.report.storage_id

    @property
    def state(self) -> ProvisioningState:
        return self.report.state

    def advance(self, state: ProvisioningState) -> None:
        logger.info(f"[Provisioner] Storage '{self.storage_id}': {self.report.state.value} -> {state.value}")
        self.report.state = state

    def fail(self, error: str) -> None:
        self.report.error = error
        self.advance(ProvisioningState.CONNECTION_FAILED)

    def track(self, physical_name: str, task: asyncio.Task) -> None:
        self.report.tables[physical_name] = TableOutcome()
        self.tasks[physical_name] = task

    def record(self, physical_name: str, ok: bool, error: Optional[str] = None) -> None:
        self.report.tables[physical_name] = TableOutcome(ok=ok, error=error)

    def seal(self) -> None:
        """No more tables will be added; Done is reached when every task has finished."""
        async def finish():
            await asyncio.gather(*self.tasks.values())
            self.advance(ProvisioningState.DONE)
        self._completion = asyncio.ensure_future(finish())

    def done(self) -> bool:
        if self.state == ProvisioningState.CONNECTION_FAILED:
            return True
        return self._completion is not None and self._completion.done()

    async def wait(self) -> ProvisioningReport:
        if self._completion is not None:
            await asyncio.shield(self._completion)
        return self.report

class TenantProvisioner:
    """
    Drives a storage descriptor through
    Connecting -> MaterializingUserTables -> MaterializingSystemTables -> Done.

    A connection failure aborts the run before any table is attempted.
    Table failures are best-effort: each one is logged and recorded in the report,
    and the remaining tables continue.
    """
    def __init__(
        self,
        connections: TenantConnectionRegistry,
        models: ModelRegistry,
        metadata: RegistryMetadataStore,
    ):
        self.connections = connections
        self.models = models
        self.metadata = metadata
        self._runs: Dict[str, ProvisioningRun] = {}

    def get_run(self, storage_id: str) -> Optional[ProvisioningRun]:
        return self._runs.get(storage_id)

    async def provision(self, storage: StorageDescriptor) -> ProvisioningRun:
        run = ProvisioningRun(storage)
        self._runs[storage.id] = run

        # 1. Connecting; 连接参数无论拨号结果如何都会保存，重启时会重新拨号
        config = connection_config_for(storage)
        await self.metadata.save_datasource(config.tenant_key, config.to_document())
        try:
            connection = await self.connections.get_or_create(config)
        except ServiceException as e:
            logger.error(f"[Provisioner] Storage '{storage.id}' aborted, no tables attempted: {e.message}")
            run.fail(e.message)
            raise

        # 2. User tables, own name as logical and physical name
        run.advance(ProvisioningState.MATERIALIZING_USER_TABLES)
        for table in storage.db_structure:
            run.track(table.name, asyncio.create_task(
                self._materialize(run, connection, table, logical_name=table.name)
            ))

        # 3. System tables, <prefix>_<name>
        run.advance(ProvisioningState.MATERIALIZING_SYSTEM_TABLES)
        for name in SYSTEM_TABLES:
            physical_name = f"{storage.db_prefix_table}_{name}"
            run.track(physical_name, asyncio.create_task(
                self._materialize_system(run, connection, name, storage.db_prefix_table)
            ))

        # 4. Done, once every task has finished
        run.seal()
        return run

    async def _materialize_system(self, run: ProvisioningRun, connection: TenantConnection, name: str, prefix: str):
        try:
            schema = prefixed_schema(connection.engine.name, name, prefix)
        except (OSError, ValueError) as e:
            physical_name = f"{prefix}_{name}"
            logger.error(f"[Provisioner] No '{name}' definition for engine '{connection.engine.name}': {e}")
            run.record(physical_name, ok=False, error=str(e))
            return
        await self._materialize(run, connection, schema, logical_name=name)

    async def _materialize(self, run: ProvisioningRun, connection: TenantConnection, schema: TableSchema, logical_name: str):
        try:
            handle = await connection.engine.materialize(connection, schema)
            await self.models.register(run.storage_id, logical_name, connection.key, schema.name, handle)
        except Exception as e:
            logger.error(f"[Provisioner] Failed to materialize '{schema.name}' for storage '{run.storage_id}': {e}")
            run.record(schema.name, ok=False, error=str(e))
            return
        logger.info(f"[Provisioner] Table '{schema.name}' ready on '{connection.key}'.")
        run.record(schema.name, ok=True)
