"""Unit tests for the full-tree porter and chunking."""

import json

import pytest

from pyargon.config import Settings
from pyargon.sync.address import Address, NodeClass
from pyargon.sync.events import Create, EventFactory, EventQueue, SetProperties, Update
from pyargon.sync.manifest import ProjectManifest
from pyargon.sync.materializer import TreeMaterializer
from pyargon.sync.paths import PathCodec
from pyargon.sync.porter import FullTreePorter, chunk_events, reorder_sentinels
from pyargon.sync.suppression import SuppressionSet
from pyargon.utils import compact_json


@pytest.fixture
def codec(tmp_path):
    return PathCodec(tmp_path, Settings())


@pytest.fixture
def queue():
    return EventQueue()


@pytest.fixture
def porter(codec, queue):
    return FullTreePorter(codec, EventFactory(codec, queue), queue)


def addr(value):
    return Address.decode(value)


def final_classes(events):
    """Resolve creates into the class each address ends up with."""
    result = {}
    for event in events:
        if isinstance(event, Create):
            result[event.address] = event.node_class
    return result


class TestPortProject:
    """Tests for FullTreePorter.port_project."""

    def test_materialize_then_port(self, codec, porter):
        """Test that porting a materialized tree recreates every node."""
        tree = {
            "ReplicatedStorage": {
                "Util.ModuleScript": {},
                "Main.Script": {
                    "Helper.LocalScript": {},
                    "Config": {"Values.ModuleScript": {}},
                },
                "Assets": {},
            },
            "Workspace": {"Door.Script": {}},
        }
        TreeMaterializer(codec, SuppressionSet()).materialize(codec.root_dir, tree)

        result = porter.port_project()

        assert final_classes(result.project) == {
            addr("ReplicatedStorage|Util"): NodeClass.MODULE_SCRIPT,
            addr("ReplicatedStorage|Main"): NodeClass.SCRIPT,
            addr("ReplicatedStorage|Main|Helper"): NodeClass.LOCAL_SCRIPT,
            addr("ReplicatedStorage|Main|Config"): NodeClass.FOLDER,
            addr("ReplicatedStorage|Main|Config|Values"): NodeClass.MODULE_SCRIPT,
            addr("ReplicatedStorage|Assets"): NodeClass.FOLDER,
            addr("Workspace|Door"): NodeClass.SCRIPT,
        }

    def test_parent_before_child(self, codec, porter):
        """Test discovery order of plain containers."""
        (codec.root_dir / "Workspace" / "A" / "B").mkdir(parents=True)

        result = porter.port_project()

        assert [e.address for e in result.project] == [
            addr("Workspace|A"),
            addr("Workspace|A|B"),
        ]

    def test_sentinel_follows_descendants(self, codec, porter):
        """Test that a container replacement comes after its children."""
        container = codec.root_dir / "Workspace" / "Main"
        container.mkdir(parents=True)
        (container / ".source.server.lua").write_text("print(1)")
        (container / "Child.lua").write_text("return 1")

        result = porter.port_project()
        project = result.project

        main = addr("Workspace|Main")
        sentinel = project.index(Create(main, NodeClass.SCRIPT, True))
        child = project.index(Create(main.child("Child"), NodeClass.MODULE_SCRIPT))
        assert child < sentinel
        assert sentinel == len(project) - 1

    def test_sources_go_to_chunks(self, codec, porter):
        """Test that file contents travel as updates in chunks."""
        container = codec.root_dir / "Workspace" / "Main"
        container.mkdir(parents=True)
        (container / ".source.server.lua").write_text("print(1)")
        (codec.root_dir / "Workspace" / "Util.lua").write_text("return 1")

        result = porter.port_project()
        updates = [e for chunk in result.chunks for e in chunk]

        assert Update(addr("Workspace|Main"), "print(1)") in updates
        assert Update(addr("Workspace|Util"), "return 1") in updates
        assert all(not isinstance(e, Update) for e in result.project)

    def test_properties_sidecar(self, codec, porter):
        """Test that a sidecar becomes a property event for its directory."""
        part = codec.root_dir / "Workspace" / "Part"
        part.mkdir(parents=True)
        (part / ".properties.json").write_text('{"Anchored": true}')

        result = porter.port_project()

        event = SetProperties(addr("Workspace|Part"), '{"Anchored": true}')
        assert event in result.project
        assert len(result.project) == 2

    def test_unaddressable_directory_skipped(self, codec, porter):
        """Test that a directory name with the separator does not stop the walk."""
        service = codec.root_dir / "ReplicatedStorage"
        (service / "a|b").mkdir(parents=True)
        (service / "a|b" / ".properties.json").write_text('{"A": 1}')
        (service / "a|b" / "Inner.lua").write_text("return 2")
        (service / "Good.lua").write_text("return 1")

        result = porter.port_project()

        create = Create(addr("ReplicatedStorage|Good"), NodeClass.MODULE_SCRIPT)
        assert create in result.project
        assert not any(isinstance(e, SetProperties) for e in result.project)
        updates = [e for chunk in result.chunks for e in chunk]
        assert updates == [Update(addr("ReplicatedStorage|Good"), "return 1")]

    def test_queue_cleared_before_and_after(self, codec, porter, queue):
        """Test that live events do not mix with a port."""
        queue.append(Update(addr("Workspace|Stale"), "x"))
        (codec.root_dir / "Workspace" / "A").mkdir(parents=True)

        result = porter.port_project()

        assert len(queue) == 0
        assert all(e.target != addr("Workspace|Stale") for e in result.project)

    def test_empty_project(self, porter):
        """Test porting without a root folder."""
        result = porter.port_project()
        assert result.project == []
        assert result.chunks == []

    def test_custom_override_root(self, codec, porter, tmp_path):
        """Test that override roots at the workspace top are ported."""
        codec.load_manifest(
            ProjectManifest.from_dict(
                {"tree": {"ReplicatedStorage": {"Shared": {"$path": "shared"}}}}
            )
        )
        (tmp_path / "shared").mkdir()
        (tmp_path / "shared" / "Net.lua").write_text("return {}")
        (tmp_path / "unrelated").mkdir()
        (tmp_path / "unrelated" / "X.lua").write_text("")

        result = porter.port_project()

        assert final_classes(result.project) == {
            addr("ReplicatedStorage|Shared"): NodeClass.FOLDER,
            addr("ReplicatedStorage|Shared|Net"): NodeClass.MODULE_SCRIPT,
        }

    def test_reserved_children_skipped(self, codec, porter):
        """Test that StarterPlayer's fixed children are not created."""
        scripts = codec.root_dir / "StarterPlayer" / "StarterPlayerScripts"
        scripts.mkdir(parents=True)
        (scripts / "Camera.client.lua").write_text("")

        result = porter.port_project()

        assert final_classes(result.project) == {
            addr("StarterPlayer|StarterPlayerScripts|Camera"): NodeClass.LOCAL_SCRIPT
        }


class TestPackages:
    """Tests for the dependency folder layout."""

    @pytest.fixture
    def packages(self, codec, tmp_path):
        codec.load_manifest(
            ProjectManifest.from_dict(
                {"tree": {"ReplicatedStorage": {"Packages": {"$path": "Packages"}}}}
            )
        )
        root = tmp_path / "Packages"
        root.mkdir()
        (root / "Roact.lua").write_text("return require(script.Parent._Index)")
        return root

    def test_src_content_root(self, packages, porter):
        """Test a dependency whose content lives in src."""
        content = packages / "_Index" / "corp_roact@1.4.0" / "roact" / "src"
        content.mkdir(parents=True)
        (content / "init.lua").write_text("return {}")
        (content / "Component.lua").write_text("return 1")

        result = porter.port_project()
        classes = final_classes(result.project)
        package = "ReplicatedStorage|Packages|_Index|corp_roact@1.4.0|roact"

        link = addr("ReplicatedStorage|Packages|Roact")
        assert classes[link] == NodeClass.MODULE_SCRIPT
        assert classes[addr(package)] == NodeClass.MODULE_SCRIPT
        assert classes[addr(package + "|Component")] == NodeClass.MODULE_SCRIPT
        assert not any("src" in e.address for e in result.project)

    def test_toml_content_root(self, packages, porter):
        """Test a dependency declaring its content root in rotriever.toml."""
        package_dir = packages / "_Index" / "corp_llama@1.0.0" / "llama"
        (package_dir / "lib").mkdir(parents=True)
        (package_dir / "lib" / "Dict.lua").write_text("return {}")
        (package_dir / "rotriever.toml").write_text(
            '[package]\nname = "llama"\ncontent_root = "lib"\n'
        )

        result = porter.port_project()
        updates = [e for chunk in result.chunks for e in chunk]

        assert Update(
            addr("ReplicatedStorage|Packages|_Index|corp_llama@1.0.0|llama|Dict"),
            "return {}",
        ) in updates

    def test_naming_restored(self, packages, porter, codec):
        """Test that the sentinel naming switch is undone."""
        porter.port_project()
        assert codec.source_name == ".source"


class TestChunking:
    """Tests for chunk_events."""

    def make_updates(self, count, size):
        return [
            Update(addr(f"Workspace|Script{i}"), "x" * size) for i in range(count)
        ]

    def test_empty(self):
        """Test that nothing yields no chunks."""
        assert chunk_events([]) == []

    def test_splits_under_budget(self):
        """Test the budget on a realistic batch."""
        events = self.make_updates(2500, 450)

        chunks = chunk_events(events)

        assert len(chunks) == 2
        assert [e for chunk in chunks for e in chunk] == events
        for chunk in chunks:
            payload = compact_json([e.to_dict() for e in chunk])
            assert len(payload.encode("utf-8")) < 1_020_000

    def test_oversized_event_alone(self):
        """Test that an event larger than the budget gets its own chunk."""
        small = self.make_updates(2, 10)
        big = Update(addr("Workspace|Big"), "y" * 5000)

        chunks = chunk_events([small[0], big, small[1]], budget=1000)

        assert chunks == [[small[0]], [big], [small[1]]]

    def test_exact_serialization(self):
        """Test that the budget counts brackets and commas."""
        events = self.make_updates(3, 10)
        size = len(compact_json([e.to_dict() for e in events[:2]]))

        assert chunk_events(events, budget=size + 1) == [events[:2], events[2:]]
        singles = [events[:1], events[1:2], events[2:]]
        assert chunk_events(events, budget=size) == singles


class TestReorderSentinels:
    """Tests for reorder_sentinels."""

    def test_local_reorder(self):
        """Test that only the sentinel moves."""
        folder = Create(addr("W|M"), NodeClass.FOLDER)
        sentinel = Create(addr("W|M"), NodeClass.SCRIPT, True)
        child = Create(addr("W|M|C"), NodeClass.FOLDER)
        grandchild = Create(addr("W|M|C|G"), NodeClass.FOLDER)
        other = Create(addr("W|O"), NodeClass.FOLDER)

        result = reorder_sentinels([folder, sentinel, child, grandchild, other])

        assert result == [folder, child, grandchild, sentinel, other]

    def test_no_descendants(self):
        """Test that a childless sentinel keeps its place."""
        sentinel = Create(addr("W|M"), NodeClass.SCRIPT, True)
        other = Create(addr("W|O"), NodeClass.FOLDER)
        assert reorder_sentinels([sentinel, other]) == [sentinel, other]

    def test_serializes_as_json(self):
        """Test that the reordered list is serializable."""
        sentinel = Create(addr("W|M"), NodeClass.SCRIPT, True)
        assert json.loads(compact_json([sentinel.to_dict()]))[0]["Delete"] is True
