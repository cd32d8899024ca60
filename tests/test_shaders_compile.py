import re

from segmentfx import shaders as S
from segmentfx.config import GPU_MAX_POLYGON_POINTS


def test_shader_strings_exist():
    for name in ["VS", "FS_HEADER", "POLYGON_FIELD_GLSL", "FS_POLYGON_FIELD", "FS_SEGMENT_HIGHLIGHT"]:
        assert hasattr(S, name)
        assert isinstance(getattr(S, name), str)


def test_effects_share_the_field_library():
    for fs in [S.FS_POLYGON_FIELD, S.FS_SEGMENT_HIGHLIGHT]:
        assert S.POLYGON_FIELD_GLSL in fs
        assert fs.lstrip().startswith("#version 330")


def test_vertex_ceiling_matches_config():
    m = re.search(r"MAX_POLYGON_POINTS\s*=\s*(\d+)", S.POLYGON_FIELD_GLSL)
    assert m is not None
    assert int(m.group(1)) == GPU_MAX_POLYGON_POINTS


def test_programs_compile(ctx):
    for fs in [S.FS_POLYGON_FIELD, S.FS_SEGMENT_HIGHLIGHT]:
        prog = ctx.program(vertex_shader=S.VS, fragment_shader=fs)
        assert prog.get("uPointTexture", None) is not None
        prog.release()
