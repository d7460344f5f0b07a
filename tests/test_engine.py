"""Unit tests for the sync session."""

import json

import pytest

from pyargon.config import Settings
from pyargon.sync import SyncSession
from pyargon.sync.address import Address, NodeClass
from pyargon.sync.events import Create, Update
from pyargon.sync.porter import PortResult


@pytest.fixture
def session(tmp_path):
    """Create a started session on an empty workspace."""
    session = SyncSession(Settings(), tmp_path)
    session.start()
    yield session
    session.stop()


def write_script(session, relative, text):
    path = session.codec.root_dir.joinpath(*relative.split("/"))
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


class TestStart:
    """Tests for session startup."""

    def test_auto_setup(self, session, tmp_path):
        """Test that the root folder and manifest are created."""
        assert (tmp_path / "src").is_dir()
        data = json.loads((tmp_path / "default.project.json").read_text())
        assert data["tree"]["Workspace"] == {"$path": "src/Workspace"}
        assert session.running

    def test_no_auto_setup(self, tmp_path):
        """Test that nothing is created when auto setup is off."""
        session = SyncSession(Settings(auto_setup=False), tmp_path)
        session.start()

        assert not (tmp_path / "src").exists()
        assert session.manifest is None

    def test_title_fallback(self, session, tmp_path):
        """Test that the placeholder manifest name is not a title."""
        assert session.title() == tmp_path.name

    def test_manifest_overrides(self, tmp_path):
        """Test that the manifest can change root folder and extension."""
        (tmp_path / "default.project.json").write_text(
            json.dumps(
                {
                    "name": "Game",
                    "rootFolder": "game",
                    "extension": ".luau",
                    "tree": {},
                }
            )
        )
        session = SyncSession(Settings(), tmp_path)
        session.start()

        assert session.title() == "Game"
        assert session.codec.root_dir == tmp_path / "game"
        assert session.codec.settings.extension == ".luau"

    def test_invalid_manifest_override_ignored(self, tmp_path):
        """Test that an unsupported extension leaves the settings alone."""
        (tmp_path / "default.project.json").write_text(
            json.dumps({"extension": ".py", "tree": {}})
        )
        session = SyncSession(Settings(), tmp_path)
        session.start()

        assert session.settings.extension == ".lua"

    def test_watch_creates_watcher(self, tmp_path):
        """Test that watching polls the root on drain."""
        session = SyncSession(Settings(), tmp_path)
        session.start(watch=True)
        write_script(session, "Workspace/Foo.lua", "return 1")

        records = session.drain()

        update = {"Action": "update", "Object": "Workspace|Foo", "Source": "return 1"}
        assert update in records
        session.stop()


class TestConnection:
    """Tests for the handshake state."""

    def test_connect_returns_previous_state(self, session):
        """Test that only the first connect counts as a new session."""
        assert session.connect() is False
        assert session.connect() is True
        assert session.stats.sessions_started == 1

    def test_disconnect(self, session):
        """Test that disconnecting resets the host title."""
        session.connect()
        session.remote_title = "Place1"
        session.disconnect()

        assert not session.connected
        assert session.remote_title == ""


class TestDrain:
    """Tests for event draining."""

    def test_drain_counts_lines(self, session):
        """Test the synced line counters."""
        session.factory.update("Workspace|Foo", "a\nb\nc")
        session.factory.create("Workspace", "Bar.lua")

        records = session.drain()

        assert len(records) == 2
        assert session.stats.lines_synced == 3
        assert session.stats.files_synced == 1
        assert session.connected
        assert session.drain() == []


class TestPortProject:
    """Tests for the chunked port."""

    def test_chunk_sequence(self, session, monkeypatch):
        """Test that Length counts down to zero."""
        chunks = [
            [Update(Address.decode(f"Workspace|S{i}"), str(i))] for i in range(3)
        ]
        project = [Create(Address.decode("Workspace|S0"), NodeClass.MODULE_SCRIPT)]
        monkeypatch.setattr(
            session.porter,
            "port_project",
            lambda: PortResult(project=project, chunks=list(chunks)),
        )

        first = session.port_project()

        assert first["Length"] == 3
        assert first["Project"] == [project[0].to_dict()]
        assert [session.next_chunk()["Length"] for _ in range(3)] == [2, 1, 0]
        assert session.next_chunk() == {"Chunk": [], "Length": 0}

    def test_new_port_abandons_previous(self, session):
        """Test that a second port replaces pending chunks."""
        write_script(session, "Workspace/Foo.lua", "return 1")

        session.port_project()
        second = session.port_project()

        assert second["Length"] == 1
        assert session.chunks_remaining == 1
        assert session.stats.projects_ported == 2

    def test_port_real_tree(self, session):
        """Test porting files written on disk."""
        write_script(session, "Workspace/Foo.server.lua", "print(1)")

        first = session.port_project()
        chunk = session.next_chunk()

        assert first["Project"] == [
            {"Action": "create", "Type": "Script", "Name": "Foo", "Parent": "Workspace"}
        ]
        assert chunk == {
            "Chunk": [
                {"Action": "update", "Object": "Workspace|Foo", "Source": "print(1)"}
            ],
            "Length": 0,
        }


class TestStop:
    """Tests for session shutdown."""

    def test_stop_clears_state(self, session):
        """Test that stopping drops queued events and chunks."""
        write_script(session, "Workspace/Foo.lua", "x")
        session.port_project()
        session.factory.update("Workspace|Foo", "y")
        session.suppression.expect(session.workspace / "a")

        session.stop()

        assert len(session.queue) == 0
        assert len(session.suppression) == 0
        assert session.chunks_remaining == 0
        assert not session.running
        assert session.uptime() == "00:00:00"


class TestMaterializeOperations:
    """Tests for the host-to-disk operations on the session."""

    def test_port_instances_counts_port(self, session):
        """Test that materializing a snapshot counts as a port."""
        session.port_instances({"instances": {"Workspace": {"Foo.Script": {}}}})

        assert (session.codec.root_dir / "Workspace" / "Foo.server.lua").is_file()
        assert session.stats.projects_ported == 1

    def test_malformed_payloads(self, session):
        """Test that malformed payloads are logged, not raised."""
        assert session.port_instances("not json") == {
            "files": 0,
            "folders": 0,
            "skipped": 0,
        }
        assert session.port_scripts("[1, 2]") == 0
        assert session.port_properties("[]") == 0

    def test_apply_remote(self, session):
        """Test that remote operations reach the applier."""
        path = write_script(session, "Workspace/Foo.lua", "old")

        applied = session.apply_remote(
            [{"Action": "sync", "Path": "Workspace/Foo", "Source": "new"}]
        )

        assert applied == 1
        assert path.read_text() == "new"


@pytest.fixture
def watched(tmp_path):
    """Create a watching session over a tree with a few scripts."""
    service = tmp_path / "src" / "ReplicatedStorage"
    (service / "Folder").mkdir(parents=True)
    (service / "Folder" / "Child.lua").write_text("return 1")
    (service / "A.lua").write_text("old")
    (service / "B").mkdir()
    (service / "B" / ".source.lua").write_text("print(0)")
    (service / "B" / "Foo.lua").write_text("return 2")

    session = SyncSession(Settings(), tmp_path)
    session.start(watch=True)
    yield session
    session.stop()


class TestEchoSuppression:
    """Tests that the session's own writes are not sent back to the host."""

    def assert_settled(self, session):
        assert session.drain() == []
        assert len(session.suppression) == 0

    def test_move_file(self, watched):
        """Test that a moved file is silent and frees its old path."""
        watched.apply_remote(
            [
                {
                    "Action": "changePath",
                    "OldPath": "ReplicatedStorage/A",
                    "NewPath": "ReplicatedStorage/Renamed",
                }
            ]
        )
        self.assert_settled(watched)

        service = watched.codec.root_dir / "ReplicatedStorage"
        (service / "A.lua").write_text("user")
        records = watched.drain()

        assert {
            "Action": "create",
            "Type": "ModuleScript",
            "Name": "A",
            "Parent": "ReplicatedStorage",
        } in records
        assert {
            "Action": "update",
            "Object": "ReplicatedStorage|A",
            "Source": "user",
        } in records

    def test_create_from_source(self, watched):
        """Test that a file created with content is silent."""
        watched.apply_remote(
            [
                {
                    "Action": "changePath",
                    "OldPath": "ReplicatedStorage/Missing",
                    "NewPath": "ReplicatedStorage/New/Script",
                    "Source": "print(1)",
                }
            ]
        )
        self.assert_settled(watched)

    def test_move_directory(self, watched):
        """Test that moving a directory reports nothing for it or its children."""
        watched.apply_remote(
            [
                {
                    "Action": "changePath",
                    "OldPath": "ReplicatedStorage/Folder",
                    "NewPath": "ReplicatedStorage/Moved",
                    "Children": 1,
                }
            ]
        )
        self.assert_settled(watched)

    def test_sync_and_unchanged_sync(self, watched):
        """Test content writes, including one that changes nothing on disk."""
        operation = {"Action": "sync", "Path": "ReplicatedStorage/A", "Source": "new"}

        watched.apply_remote([operation])
        self.assert_settled(watched)

        watched.apply_remote([operation])
        self.assert_settled(watched)

    def test_remove_and_collapse(self, watched):
        """Test that collapsing a container is silent."""
        watched.apply_remote(
            [
                {
                    "Action": "remove",
                    "Path": "ReplicatedStorage/B/Foo",
                    "Type": "ModuleScript",
                    "Children": 0,
                }
            ]
        )

        assert (watched.codec.root_dir / "ReplicatedStorage" / "B.lua").is_file()
        self.assert_settled(watched)

    def test_convert_and_back(self, watched):
        """Test that converting a script both ways is silent."""
        convert = {
            "Action": "convert",
            "OldPath": "ReplicatedStorage/A",
            "NewPath": "ReplicatedStorage/A",
            "Type": "ModuleScript",
        }

        watched.apply_remote([convert])
        self.assert_settled(watched)

        watched.apply_remote([{**convert, "Undo": True}])
        self.assert_settled(watched)

    def test_port_instances(self, watched):
        """Test that materializing a snapshot is silent."""
        watched.port_instances(
            {
                "instances": {
                    "ReplicatedStorage": {"Model": {"Part.Script": {"Inner": {}}}}
                }
            }
        )

        container = watched.codec.root_dir / "ReplicatedStorage" / "Model" / "Part"
        assert (container / ".source.server.lua").is_file()
        self.assert_settled(watched)

    def test_port_scripts_and_properties(self, watched):
        """Test that writing sources and new sidecars is silent."""
        watched.port_scripts(
            [{"Instance": "ReplicatedStorage/A", "Type": "ModuleScript", "Source": "x"}]
        )
        watched.port_properties({"ReplicatedStorage/Folder": {"Anchored": True}})

        sidecar = (
            watched.codec.root_dir / "ReplicatedStorage" / "Folder" / ".properties.json"
        )
        assert sidecar.is_file()
        self.assert_settled(watched)

    def test_user_edit_after_echo(self, watched):
        """Test that a user save after an engine write is still reported."""
        watched.apply_remote(
            [{"Action": "sync", "Path": "ReplicatedStorage/A", "Source": "engine"}]
        )
        self.assert_settled(watched)

        path = watched.codec.root_dir / "ReplicatedStorage" / "A.lua"
        path.write_text("edited by the user")

        assert watched.drain() == [
            {
                "Action": "update",
                "Object": "ReplicatedStorage|A",
                "Source": "edited by the user",
            }
        ]
