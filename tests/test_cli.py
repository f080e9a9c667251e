"""Tests for the command-line interface."""

import pytest
import typer
from typer.testing import CliRunner

from conftest import posix_only
from main import app
from pbrtapi.cli.parameters import Services, build_transform, parse_vector
from pbrtapi.utils.folder import ModelStore

runner = CliRunner()

FAKE_ASSIMP = """\
printf '# Textures\\nAttributeBegin\\n  Shape "sphere"\\nAttributeEnd\\n' > "$3"
"""

FAKE_PBRT = """\
while [ $# -gt 0 ]; do
  case "$1" in
    --outfile) out="$2"; shift 2 ;;
    *) scene="$1"; shift ;;
  esac
done
cat "$scene" > "$out"
"""


@pytest.fixture
def tools(restore_config, monkeypatch, make_executable):
    monkeypatch.setattr(restore_config, "ASSIMP_PATH", make_executable("assimp", FAKE_ASSIMP))
    monkeypatch.setattr(restore_config, "PBRT_PATH", make_executable("pbrt", FAKE_PBRT))
    monkeypatch.setattr(restore_config, "PBRT_GPU", False)
    return restore_config


def invoke(uploads, *args):
    return runner.invoke(app, ["--uploads", str(uploads), *args])


@pytest.fixture
def imported(uploads, tmp_path):
    model = tmp_path / "chair.obj"
    model.write_text("v 0 0 0\n")
    result = invoke(uploads, "import-model", str(model), "--name", "Chair")
    assert result.exit_code == 0, result.output
    return ModelStore(uploads).list_models()[0]["uuid"]


class TestParameters:
    def test_parse_vector(self):
        assert parse_vector("1, 2.5,-3", 3, "--translate") == [1.0, 2.5, -3.0]
        assert parse_vector(None, 3, "--translate") is None
        assert parse_vector("  ", 3, "--translate") is None

    @pytest.mark.parametrize("value", ["1,2", "1,2,3,4", "a,b,c"])
    def test_parse_vector_errors(self, value):
        with pytest.raises(typer.BadParameter):
            parse_vector(value, 3, "--scale")

    def test_renderer_starts_cache_sweeper(self, restore_config, monkeypatch, uploads):
        monkeypatch.setattr(restore_config, "ENABLE_CACHE", True)
        monkeypatch.setattr(restore_config, "CACHE_SWEEP_INTERVAL", 3600)
        services = Services(str(uploads))
        services.renderer()
        try:
            assert services.cache._sweeper is not None
            assert services.cache._sweeper.is_alive()
        finally:
            services.close()
        assert services.cache._sweeper is None

    def test_no_sweeper_without_cache(self, restore_config, monkeypatch, uploads):
        monkeypatch.setattr(restore_config, "ENABLE_CACHE", False)
        services = Services(str(uploads))
        assert services.renderer().use_cache is False
        assert services.cache._sweeper is None

    def test_build_transform(self):
        transform = build_transform("1,0,0", None, "2,2,2")
        assert transform.directives() == ["Translate 1 0 0", "Scale 2 2 2"]


class TestModelCommands:
    def test_import_and_show(self, uploads, imported):
        result = invoke(uploads, "show", imported)
        assert result.exit_code == 0
        assert f'"uuid": "{imported}"' in result.output
        assert '"name": "Chair"' in result.output

    def test_import_rejects_missing_file(self, uploads, tmp_path):
        result = invoke(uploads, "import-model", str(tmp_path / "missing.obj"))
        assert result.exit_code == 1

    def test_list(self, uploads, imported):
        result = invoke(uploads, "list")
        assert result.exit_code == 0

    def test_show_unknown(self, uploads):
        assert invoke(uploads, "show", "11111111-2222-3333-4444-555555555555").exit_code == 1
        assert invoke(uploads, "show", "not-an-id").exit_code == 1

    def test_delete(self, uploads, imported):
        assert invoke(uploads, "delete", imported).exit_code == 0
        assert ModelStore(uploads).list_models() == []
        assert invoke(uploads, "delete", imported).exit_code == 1


@posix_only
class TestSceneCommands:
    def test_convert_and_transform(self, uploads, imported, tools):
        store = ModelStore(uploads)

        result = invoke(uploads, "convert", imported)
        assert result.exit_code == 0, result.output
        assert store.converted_scene_path(imported).read_text().startswith("# Textures\nAttributeBegin")

        result = invoke(uploads, "transform", imported, "--translate", "1,0,0")
        assert result.exit_code == 0, result.output
        assert "  Translate 1 0 0\n" in store.transformed_scene_path(imported).read_text()
        assert store.read_manifest(imported)["transformed_available"] is True

    def test_convert_all(self, uploads, imported, tools):
        result = invoke(uploads, "convert", "--all")
        assert result.exit_code == 0, result.output
        assert "Converted 1 of 1 models" in result.output

    def test_convert_needs_target(self, uploads, tools):
        assert invoke(uploads, "convert").exit_code == 1

    def test_convert_failure(self, uploads, imported, tools, monkeypatch, make_executable):
        monkeypatch.setattr(tools, "ASSIMP_PATH", make_executable("broken", "echo boom 1>&2\nexit 4\n"))
        result = invoke(uploads, "convert", imported)
        assert result.exit_code == 1

    def test_transform_before_convert(self, uploads, imported):
        assert invoke(uploads, "transform", imported, "--scale", "2,2,2").exit_code == 1

    def test_transform_bad_vector(self, uploads, imported, tools):
        invoke(uploads, "convert", imported)
        assert invoke(uploads, "transform", imported, "--rotate", "1,2").exit_code == 2

    def test_render_uses_cache(self, uploads, tools, tmp_path):
        scene = tmp_path / "scene.pbrt"
        scene.write_text('Shape "sphere"\n')
        output = tmp_path / "image.exr"

        first = invoke(uploads, "render", str(scene), "--output", str(output))
        assert first.exit_code == 0, first.output
        assert "MISS" in first.output
        assert output.read_bytes() == b'Shape "sphere"\n'

        second = invoke(uploads, "render", str(scene), "--output", str(output))
        assert "HIT" in second.output

        stats = invoke(uploads, "cache-stats")
        assert stats.exit_code == 0

        swept = invoke(uploads, "sweep", "--max-age-days", "1")
        assert "Removed 0 cache entries" in swept.output

    def test_render_rejects_unsafe_scene(self, uploads, tools, tmp_path):
        scene = tmp_path / "scene.pbrt"
        scene.write_text('Include "/etc/passwd"\n')
        assert invoke(uploads, "render", str(scene)).exit_code == 1


def test_debug_command(uploads):
    result = invoke(uploads, "debug")
    assert result.exit_code == 0
    assert "External Tools" in result.output
