VS = """
#version 330
in vec2 in_vert;
out vec2 uv;
void main(){ gl_Position = vec4(in_vert,0.0,1.0); uv = (in_vert + 1.0)*0.5; }
"""

FS_HEADER = """
#version 330
in vec2 uv; out vec4 fragColor;
"""

# Shared by every effect. Mirrors segmentfx.field rule for rule.
POLYGON_FIELD_GLSL = """
uniform sampler2D uPointTexture;  // RGBA8, R = x, G = y (normalized)
uniform ivec2 uPointTextureDim;   // raster (w, h)
uniform int   uPointCount;        // vertices packed in the raster
uniform vec4  uPointAABB;         // minX, minY, maxX, maxY (normalized)
uniform vec2  uResolution;        // canvas size in pixels

const int   MAX_POLYGON_POINTS = 4096;
const float EDGE_EPS = 1e-6;

vec2 readPointPx(int i){
    int w = uPointTextureDim.x;
    return texelFetch(uPointTexture, ivec2(i % w, i / w), 0).rg * uResolution;
}

// uv has y up, the canvas has y down
vec2 canvasPx(vec2 texUV){ return vec2(texUV.x, 1.0 - texUV.y) * uResolution; }

bool insidePointAABB(vec2 P, float marginPx){
    vec2 lo = uPointAABB.xy * uResolution - vec2(marginPx);
    vec2 hi = uPointAABB.zw * uResolution + vec2(marginPx);
    return all(greaterThanEqual(P, lo)) && all(lessThanEqual(P, hi));
}

float sdSegment(vec2 p, vec2 a, vec2 b){
    vec2 pa = p - a, ba = b - a;
    float h = clamp(dot(pa, ba) / dot(ba, ba), 0.0, 1.0);
    return length(pa - ba * h);
}

// x: distance to the nearest edge in pixels, y: 1.0 inside (even-odd) else 0.0
vec2 polygonField(vec2 P){
    int n = min(uPointCount, MAX_POLYGON_POINTS);
    if (n < 3) return vec2(1e20, 0.0);

    float d = 1e20;
    bool inside = false;
    for (int i = 0; i < MAX_POLYGON_POINTS; ++i){
        if (i >= n) break;
        int j = (i + 1 == n) ? 0 : i + 1;
        vec2 a = readPointPx(i);
        vec2 b = readPointPx(j);
        vec2 ab = b - a;
        if (abs(ab.x) + abs(ab.y) < EDGE_EPS) continue;

        d = min(d, sdSegment(P, a, b));
        if ((a.y <= P.y) != (b.y <= P.y)){
            float xInt = a.x + (P.y - a.y) / (b.y - a.y) * ab.x;
            if (P.x < xInt) inside = !inside;
        }
    }
    return vec2(d, inside ? 1.0 : 0.0);
}
"""


def fragment_shader(body: str) -> str:
    """Prefix an effect's fragment body with the shared polygon field library."""
    return FS_HEADER + POLYGON_FIELD_GLSL + body


# r = signed distance (negative inside), g = inside flag, b = unsigned distance
FS_POLYGON_FIELD = fragment_shader(
    """
void main(){
    vec2 f = polygonField(canvasPx(uv));
    float sd = f.y > 0.5 ? -f.x : f.x;
    fragColor = vec4(sd, f.y, f.x, 1.0);
}
"""
)

FS_SEGMENT_HIGHLIGHT = fragment_shader(
    """
uniform sampler2D photo;
uniform int   has_segment;
uniform vec4  fill_color;
uniform vec4  edge_color;
uniform float edge_width;
void main(){
    vec4 base = texture(photo, uv);
    if (has_segment == 0){ fragColor = base; return; }

    vec2 P = canvasPx(uv);
    if (!insidePointAABB(P, edge_width * 4.0)){ fragColor = base; return; }

    vec2 f = polygonField(P);
    vec3 col = base.rgb;
    if (f.y > 0.5) col = mix(col, fill_color.rgb, fill_color.a);
    float glow = exp(-f.x / max(edge_width, 1e-3));
    col = mix(col, edge_color.rgb, edge_color.a * glow);
    fragColor = vec4(col, 1.0);
}
"""
)
