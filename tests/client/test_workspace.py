"""Tests for workspace pairing."""

from __future__ import annotations

import re
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from statesync.client.api import NotFoundError, WorkspaceRecord
from statesync.client.keystore import KeyCache, KeyManager, PremiumRequired, workspace_slot
from statesync.client.state import LocalState
from statesync.client.telemetry import Telemetry
from statesync.client.workspace import (
    InvalidInviteCode,
    WorkspaceManager,
    generate_invite_code,
    normalize_device_ids,
)


class FakeWorkspaceBackend:
    """In-memory workspace collection standing in for the transport."""

    def __init__(self) -> None:
        self.records: dict[str, WorkspaceRecord] = {}
        self.create_workspace = AsyncMock(side_effect=self._create)
        self.get_workspace = AsyncMock(side_effect=self._get)
        self.update_workspace = AsyncMock(side_effect=self._update)

    async def _create(
        self,
        owner_device_id: str,
        device_ids: list[str],
        invite_code: str,
        shared_key: str | None = None,
    ) -> WorkspaceRecord:
        record = WorkspaceRecord(
            id=f"ws{len(self.records) + 1}",
            owner_device_id=owner_device_id,
            device_ids=list(device_ids),
            invite_code=invite_code,
            shared_key=shared_key,
        )
        self.records[record.id] = record
        return record

    async def _get(self, workspace_id: str) -> WorkspaceRecord:
        if workspace_id not in self.records:
            raise NotFoundError("Resource not found", 404)
        record = self.records[workspace_id]
        return WorkspaceRecord(
            id=record.id,
            owner_device_id=record.owner_device_id,
            device_ids=list(record.device_ids),
            invite_code=record.invite_code,
            shared_key=record.shared_key,
        )

    async def _update(self, workspace_id: str, fields: dict[str, object]) -> WorkspaceRecord:
        record = self.records[workspace_id]
        for name, value in fields.items():
            setattr(record, name, value)
        return record


@pytest.fixture
def backend() -> FakeWorkspaceBackend:
    backend = FakeWorkspaceBackend()
    backend.records["ws1"] = WorkspaceRecord(
        id="ws1",
        owner_device_id="dev-owner",
        device_ids=["dev-owner"],
        invite_code="ABCDEFGH",
    )
    return backend


@pytest.fixture
def state(config_dir: Path) -> LocalState:
    state = LocalState(config_dir)
    state.update_preferences(premium=True, has_completed_onboarding=True)
    state.write_device_id("linux-1-self")
    return state


@pytest.fixture
def keys(backend: FakeWorkspaceBackend, state: LocalState, config_dir: Path) -> KeyManager:
    return KeyManager(
        backend,  # type: ignore[arg-type]
        state,
        cache=KeyCache(config_dir, use_keyring=False),
        telemetry=Telemetry(),
    )


@pytest.fixture
def manager(
    backend: FakeWorkspaceBackend, keys: KeyManager, state: LocalState
) -> WorkspaceManager:
    return WorkspaceManager(backend, keys, state, telemetry=Telemetry())  # type: ignore[arg-type]


class TestHelpers:
    """Tests for invite codes and device id normalization."""

    def test_invite_code_format(self) -> None:
        """Invite codes should be 8 uppercase alphanumeric characters."""
        for _ in range(20):
            assert re.fullmatch(r"[A-Z0-9]{8}", generate_invite_code())

    def test_normalize_device_ids(self) -> None:
        """Empty and duplicate ids are dropped, order is kept."""
        assert normalize_device_ids(["b", "", "a", "b", "", "c", "a"]) == ["b", "a", "c"]


class TestCreateWorkspace:
    """Tests for creating a workspace."""

    @pytest.mark.asyncio
    async def test_create(
        self, manager: WorkspaceManager, backend: FakeWorkspaceBackend, state: LocalState
    ) -> None:
        """Creating should register this device as owner and only member."""
        info = await manager.create_or_join_workspace()

        assert len(info.invite_code) == 8
        assert re.fullmatch(r"[A-Z0-9]+", info.invite_code)
        backend.create_workspace.assert_awaited_once_with(
            owner_device_id="linux-1-self",
            device_ids=["linux-1-self"],
            invite_code=info.invite_code,
        )
        assert state.read_workspace_id() == info.id

    @pytest.mark.asyncio
    async def test_requires_premium(
        self, manager: WorkspaceManager, backend: FakeWorkspaceBackend, state: LocalState
    ) -> None:
        state.update_preferences(premium=False)
        with pytest.raises(PremiumRequired):
            await manager.create_or_join_workspace()
        backend.create_workspace.assert_not_called()
        assert state.read_workspace_id() is None

    @pytest.mark.asyncio
    async def test_single_argument_rejected(self, manager: WorkspaceManager) -> None:
        with pytest.raises(ValueError):
            await manager.create_or_join_workspace("ws1")


class TestJoinWorkspace:
    """Tests for joining a workspace."""

    @pytest.mark.asyncio
    async def test_join(
        self, manager: WorkspaceManager, backend: FakeWorkspaceBackend, state: LocalState
    ) -> None:
        """A matching invite code appends this device and persists the id."""
        info = await manager.create_or_join_workspace("ws1", "ABCDEFGH")

        assert info.id == "ws1"
        assert info.invite_code == "ABCDEFGH"
        assert backend.records["ws1"].device_ids == ["dev-owner", "linux-1-self"]
        assert state.read_workspace_id() == "ws1"

    @pytest.mark.asyncio
    async def test_invalid_code_writes_nothing(
        self,
        manager: WorkspaceManager,
        backend: FakeWorkspaceBackend,
        state: LocalState,
        config_dir: Path,
    ) -> None:
        """A wrong code raises without any remote or local write."""
        files_before = sorted(p.name for p in config_dir.iterdir())

        with pytest.raises(InvalidInviteCode):
            await manager.create_or_join_workspace("ws1", "WRONGCODE")

        backend.update_workspace.assert_not_called()
        backend.create_workspace.assert_not_called()
        assert state.read_workspace_id() is None
        assert sorted(p.name for p in config_dir.iterdir()) == files_before

    @pytest.mark.asyncio
    async def test_invalid_code_on_fresh_install(
        self, backend: FakeWorkspaceBackend, tmp_path: Path
    ) -> None:
        """A wrong code must not mint a device id on a fresh install."""
        config_dir = tmp_path / "fresh"
        state = LocalState(config_dir)
        state.update_preferences(premium=True)
        keys = KeyManager(
            backend,  # type: ignore[arg-type]
            state,
            cache=KeyCache(config_dir, use_keyring=False),
            telemetry=Telemetry(),
        )
        manager = WorkspaceManager(backend, keys, state, telemetry=Telemetry())  # type: ignore[arg-type]
        assert sorted(p.name for p in config_dir.iterdir()) == ["preferences.json"]

        with pytest.raises(InvalidInviteCode):
            await manager.create_or_join_workspace("ws1", "WRONGCODE")

        assert sorted(p.name for p in config_dir.iterdir()) == ["preferences.json"]
        assert state.read_device_id() is None
        backend.update_workspace.assert_not_called()

    @pytest.mark.asyncio
    async def test_join_mints_device_id_after_match(
        self, backend: FakeWorkspaceBackend, tmp_path: Path
    ) -> None:
        """A fresh install gets its device id once the code matches."""
        config_dir = tmp_path / "fresh"
        state = LocalState(config_dir)
        state.update_preferences(premium=True)
        keys = KeyManager(
            backend,  # type: ignore[arg-type]
            state,
            cache=KeyCache(config_dir, use_keyring=False),
            telemetry=Telemetry(),
        )
        manager = WorkspaceManager(backend, keys, state, telemetry=Telemetry())  # type: ignore[arg-type]

        await manager.create_or_join_workspace("ws1", "ABCDEFGH")

        device_id = state.read_device_id()
        assert device_id
        assert backend.records["ws1"].device_ids == ["dev-owner", device_id]

    @pytest.mark.asyncio
    async def test_join_requires_premium(
        self, manager: WorkspaceManager, backend: FakeWorkspaceBackend, state: LocalState
    ) -> None:
        """The premium gate runs before any remote read."""
        state.update_preferences(premium=False)
        with pytest.raises(PremiumRequired):
            await manager.create_or_join_workspace("ws1", "ABCDEFGH")
        backend.get_workspace.assert_not_called()

    @pytest.mark.asyncio
    async def test_code_compared_exactly(
        self, manager: WorkspaceManager, backend: FakeWorkspaceBackend
    ) -> None:
        """Case differences should not match."""
        with pytest.raises(InvalidInviteCode):
            await manager.create_or_join_workspace("ws1", "abcdefgh")
        backend.update_workspace.assert_not_called()

    @pytest.mark.asyncio
    async def test_join_twice_is_idempotent(
        self, manager: WorkspaceManager, backend: FakeWorkspaceBackend
    ) -> None:
        await manager.create_or_join_workspace("ws1", "ABCDEFGH")
        await manager.create_or_join_workspace("ws1", "ABCDEFGH")
        assert backend.records["ws1"].device_ids == ["dev-owner", "linux-1-self"]
        assert backend.update_workspace.await_count == 1

    @pytest.mark.asyncio
    async def test_unknown_workspace(
        self, manager: WorkspaceManager, state: LocalState
    ) -> None:
        with pytest.raises(NotFoundError):
            await manager.create_or_join_workspace("nope", "ABCDEFGH")
        assert state.read_workspace_id() is None


class TestRegisterDevice:
    """Tests for device registration."""

    @pytest.mark.asyncio
    async def test_dedup_after_many_registrations(
        self, manager: WorkspaceManager, backend: FakeWorkspaceBackend
    ) -> None:
        """N registrations of the same device leave exactly one entry."""
        backend.records["ws1"].device_ids = ["dev-owner", "", "dev-owner", ""]

        for _ in range(5):
            await manager.register_device_with_workspace("ws1", "dev2")

        device_ids = backend.records["ws1"].device_ids
        assert device_ids == ["dev-owner", "dev2"]
        assert "" not in device_ids
        assert backend.update_workspace.await_count == 1

    @pytest.mark.asyncio
    async def test_no_write_when_unchanged(
        self, manager: WorkspaceManager, backend: FakeWorkspaceBackend
    ) -> None:
        assert await manager.register_device_with_workspace("ws1", "dev-owner") is False
        backend.update_workspace.assert_not_called()

    @pytest.mark.asyncio
    async def test_cleans_list_even_if_present(
        self, manager: WorkspaceManager, backend: FakeWorkspaceBackend
    ) -> None:
        """Stored empties and duplicates are cleaned up on registration."""
        backend.records["ws1"].device_ids = ["dev-owner", "dev-owner"]
        assert await manager.register_device_with_workspace("ws1", "dev-owner") is True
        assert backend.records["ws1"].device_ids == ["dev-owner"]

    @pytest.mark.asyncio
    async def test_empty_device_id(self, manager: WorkspaceManager) -> None:
        with pytest.raises(ValueError):
            await manager.register_device_with_workspace("ws1", "")


class TestCurrentAndLeave:
    """Tests for the current workspace and leaving it."""

    def test_not_paired(self, manager: WorkspaceManager) -> None:
        assert manager.get_current_workspace_id() is None

    def test_current(self, manager: WorkspaceManager, state: LocalState) -> None:
        state.write_workspace_id("ws1")
        assert manager.get_current_workspace_id() == "ws1"

    def test_leave(
        self, manager: WorkspaceManager, state: LocalState, config_dir: Path
    ) -> None:
        """Leaving forgets the workspace id and its cached key."""
        state.write_workspace_id("ws1")
        cache = KeyCache(config_dir, use_keyring=False)
        cache.set(workspace_slot("ws1"), "a" * 64)

        assert manager.leave_workspace() is True
        assert state.read_workspace_id() is None
        assert cache.get(workspace_slot("ws1")) is None

    def test_leave_without_workspace(self, manager: WorkspaceManager) -> None:
        assert manager.leave_workspace() is False

    def test_leave_refused_while_syncing(
        self, backend: FakeWorkspaceBackend, keys: KeyManager, state: LocalState
    ) -> None:
        state.write_workspace_id("ws1")
        manager = WorkspaceManager(
            backend, keys, state, telemetry=Telemetry(), is_syncing=lambda: True  # type: ignore[arg-type]
        )
        assert manager.leave_workspace() is False
        assert state.read_workspace_id() == "ws1"


class TestWithMockTransport:
    """Join flow against a plain mock transport."""

    @pytest.mark.asyncio
    async def test_join_appends_device(self, state: LocalState, config_dir: Path) -> None:
        transport = MagicMock()
        transport.get_workspace = AsyncMock(
            return_value=WorkspaceRecord(
                id="ws1", owner_device_id="o", device_ids=["o"], invite_code="ABCDEFGH"
            )
        )
        transport.update_workspace = AsyncMock()
        keys = KeyManager(transport, state, cache=KeyCache(config_dir, use_keyring=False))
        manager = WorkspaceManager(transport, keys, state, telemetry=Telemetry())

        await manager.create_or_join_workspace("ws1", "ABCDEFGH")

        transport.update_workspace.assert_awaited_once_with(
            "ws1", {"device_ids": ["o", "linux-1-self"]}
        )
        assert state.read_workspace_id() == "ws1"
