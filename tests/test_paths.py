"""Tests for path classification and sanitization."""

import pytest

from pbrtapi.processing.exceptions import SecurityViolation
from pbrtapi.processing.paths import PathKind, PathSanitizer
from pbrtapi.processing.textures import TexturePlaceholderResolver


@pytest.fixture
def sanitizer(uploads):
    return PathSanitizer(uploads)


SUSPICIOUS = [
    "../../etc/passwd",
    "textures/../../secret.png",
    "~/secret",
    "$HOME/.ssh/id_rsa",
    "%USERPROFILE%\\Desktop\\x.png",
    "\\\\server\\share\\x.png",
    "//server/share/x.png",
    "/etc/passwd",
    "/proc/self/environ",
    "/opt/other/file.png",
    "C:\\Windows\\System32\\x.png",
    "C:/data/wood.png",
]


class TestClassify:
    def test_safe_relative(self, sanitizer):
        assert sanitizer.classify("textures/wood.png") is PathKind.SAFE_RELATIVE
        assert sanitizer.classify("textures\\wood.png") is PathKind.SAFE_RELATIVE

    def test_model_absolute(self, sanitizer, root_str):
        assert sanitizer.classify(f"{root_str}/models/abc/mesh.ply") is PathKind.MODEL_ABSOLUTE

    def test_placeholders(self, sanitizer):
        assert sanitizer.classify("*3") is PathKind.PLACEHOLDER
        assert sanitizer.classify("textures/*0") is PathKind.PLACEHOLDER
        assert sanitizer.classify("D:/export/assimp/*1") is PathKind.PLACEHOLDER

    def test_placeholder_in_system_path_is_suspicious(self, sanitizer):
        assert sanitizer.classify("/etc/*0") is PathKind.SUSPICIOUS
        assert sanitizer.classify("../*0") is PathKind.SUSPICIOUS

    @pytest.mark.parametrize("path", SUSPICIOUS)
    def test_suspicious(self, sanitizer, path):
        assert sanitizer.classify(path) is PathKind.SUSPICIOUS

    def test_traversal_after_root_prefix(self, sanitizer, root_str):
        assert sanitizer.classify(f"{root_str}/../secret.png") is PathKind.SUSPICIOUS


class TestSanitize:
    def test_root_prefixed_paths_become_relative(self, sanitizer, root_str):
        text = f'Shape "plymesh" "string filename" "{root_str}/models/abc/mesh.ply"\n'
        assert sanitizer.sanitize(text) == 'Shape "plymesh" "string filename" "models/abc/mesh.ply"\n'

    def test_backslashes_normalized(self, sanitizer):
        text = 'Texture "t" "spectrum" "imagemap" "string filename" "textures\\wood.png"'
        assert sanitizer.sanitize(text).endswith('"textures/wood.png"')

    def test_absolute_mode(self, sanitizer, root_str):
        text = 'Texture "t" "spectrum" "imagemap" "string filename" "textures/wood.png"'
        assert sanitizer.sanitize(text, "absolute").endswith(f'"{root_str}/textures/wood.png"')

    def test_absolute_mode_keeps_root_paths(self, sanitizer, root_str):
        text = f'Shape "plymesh" "string filename" "{root_str}/models/abc/mesh.ply"'
        assert sanitizer.sanitize(text, "absolute") == text

    def test_other_strings_untouched(self, sanitizer):
        text = 'MakeNamedMaterial "wood" "string type" "diffuse"\nShape "sphere" "float radius" 1\n'
        assert sanitizer.sanitize(text) == text

    def test_root_prefix_in_any_string(self, sanitizer, root_str):
        text = f'Shape "plymesh" "string note" "{root_str}/models/abc"'
        assert sanitizer.sanitize(text) == 'Shape "plymesh" "string note" "models/abc"'

    def test_mapname_parameter(self, sanitizer):
        with pytest.raises(SecurityViolation):
            sanitizer.sanitize('LightSource "infinite" "string mapname" "/etc/sky.exr"')

    def test_include_path(self, sanitizer):
        with pytest.raises(SecurityViolation) as exc:
            sanitizer.sanitize('Include "../other/scene.pbrt"')
        assert exc.value.path == "../other/scene.pbrt"

    @pytest.mark.parametrize("path", ["../../etc/passwd", "~/secret", "\\\\server\\share"])
    def test_rejects_whole_document(self, sanitizer, root_str, path):
        text = (
            f'Shape "plymesh" "string filename" "{root_str}/models/abc/mesh.ply"\n'
            f'Texture "t" "spectrum" "imagemap" "string filename" "{path}"\n'
        )
        original = str(text)
        with pytest.raises(SecurityViolation) as exc:
            sanitizer.sanitize(text)
        assert exc.value.path == path
        assert text == original

    def test_relative_placeholder_preserved(self, sanitizer):
        text = 'Texture "t" "spectrum" "imagemap" "string filename" "*2"'
        assert sanitizer.sanitize(text) == text

    @pytest.mark.parametrize("path", ["/opt/elsewhere/*7", "D:/data/*7", "D:\\data\\*7"])
    def test_absolute_placeholder_prefix_dropped(self, sanitizer, path):
        text = f'Texture "t" "spectrum" "imagemap" "string filename" "{path}"'
        assert sanitizer.sanitize(text) == 'Texture "t" "spectrum" "imagemap" "string filename" "*7"'

    def test_unresolved_placeholder_leaves_no_absolute_path(self, sanitizer, uploads, tmp_path):
        text = 'Texture "t" "spectrum" "imagemap" "string filename" "/opt/elsewhere/*7"'
        result = TexturePlaceholderResolver(uploads).resolve(tmp_path / "model", sanitizer.sanitize(text))
        assert '"*7"' in result
        assert "/opt" not in result

    def test_unknown_mode(self, sanitizer):
        with pytest.raises(ValueError):
            sanitizer.sanitize("", "sideways")
