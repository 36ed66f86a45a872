"""
Model processor for glTF 2.0 containers.

Handles the .gltf JSON form (with embedded data: URI buffers) and the binary
.glb form, converting between them and reporting mesh statistics. Mesh
simplification and buffer compression need external tools and are reported
as unsupported. OBJ and FBX sources pass through unchanged.
"""

import json
import base64
import struct
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..transforms import AssetKind, Pipeline, TransformKind
from .base import Processor, ProcessorError


GLB_MAGIC = b"glTF"
GLB_VERSION = 2
CHUNK_JSON = 0x4E4F534A
CHUNK_BIN = 0x004E4942
DATA_URI_PREFIX = "data:"


@dataclass
class ModelDocument:
    """A parsed glTF document with all buffer data merged into one binary blob."""
    gltf: Dict[str, Any]
    binary: bytes = b""
    raw: Optional[bytes] = None
    source_format: str = "glb"
    output: Optional[bytes] = None


@dataclass
class ModelInfo:
    meshes: int = 0
    materials: int = 0
    textures: int = 0
    animations: int = 0
    nodes: int = 0
    total_vertices: int = 0
    total_indices: int = 0

    def __str__(self) -> str:
        return (f"{self.meshes} meshes, {self.total_vertices} vertices, "
                f"{self.total_indices} indices, {self.materials} materials")


@dataclass
class LodLevelEstimate:
    level: int
    vertex_ratio: float
    suggested_distance: float
    estimated_triangles: int


def _align4(data: bytes, pad: bytes) -> bytes:
    remainder = len(data) % 4
    return data if remainder == 0 else data + pad * (4 - remainder)


def detect_format(data: bytes) -> str:
    if data[:4] == GLB_MAGIC:
        return "glb"
    stripped = data.lstrip()
    if stripped[:1] == b"{":
        return "gltf"
    raise ProcessorError("Not a glTF or GLB file")


def parse_glb(data: bytes) -> ModelDocument:
    if len(data) < 12:
        raise ProcessorError("GLB header truncated")
    magic, version, length = struct.unpack_from("<4sII", data, 0)
    if magic != GLB_MAGIC:
        raise ProcessorError("Missing GLB magic")
    if version != GLB_VERSION:
        raise ProcessorError(f"Unsupported GLB version {version}")
    if length > len(data):
        raise ProcessorError("GLB length exceeds file size")

    gltf = None
    binary = b""
    offset = 12
    while offset + 8 <= length:
        chunk_length, chunk_type = struct.unpack_from("<II", data, offset)
        chunk = data[offset + 8:offset + 8 + chunk_length]
        if len(chunk) != chunk_length:
            raise ProcessorError("GLB chunk truncated")
        if chunk_type == CHUNK_JSON:
            try:
                gltf = json.loads(chunk.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                raise ProcessorError(f"Invalid GLB JSON chunk: {e}")
        elif chunk_type == CHUNK_BIN and not binary:
            binary = bytes(chunk)
        offset += 8 + chunk_length

    if gltf is None:
        raise ProcessorError("GLB has no JSON chunk")

    buffers = gltf.get("buffers", [])
    if buffers and "uri" not in buffers[0]:
        binary = binary[:buffers[0].get("byteLength", len(binary))]
    return ModelDocument(gltf, binary, source_format="glb")


def parse_gltf(data: bytes) -> ModelDocument:
    try:
        gltf = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProcessorError(f"Invalid glTF JSON: {e}")
    if not isinstance(gltf, dict):
        raise ProcessorError("glTF root must be an object")

    # Merge every embedded buffer into one blob, rebasing buffer views
    blob = b""
    base_offsets: List[int] = []
    for index, buffer in enumerate(gltf.get("buffers", [])):
        uri = buffer.get("uri")
        if uri is None:
            raise ProcessorError(f"Buffer {index} has no uri")
        if not uri.startswith(DATA_URI_PREFIX):
            raise ProcessorError(f"External buffer '{uri}' is not supported; embed it or use GLB")
        try:
            payload = base64.b64decode(uri.split(",", 1)[1])
        except (IndexError, ValueError) as e:
            raise ProcessorError(f"Buffer {index} has an invalid data URI: {e}")
        blob = _align4(blob, b"\x00")
        base_offsets.append(len(blob))
        blob += payload

    for view in gltf.get("bufferViews", []):
        buffer_index = view.get("buffer", 0)
        if buffer_index >= len(base_offsets):
            raise ProcessorError(f"bufferView references missing buffer {buffer_index}")
        view["byteOffset"] = view.get("byteOffset", 0) + base_offsets[buffer_index]
        view["buffer"] = 0

    if base_offsets:
        gltf["buffers"] = [{"byteLength": len(blob)}]
    return ModelDocument(gltf, blob, source_format="gltf")


def parse_model(data: bytes) -> ModelDocument:
    return parse_glb(data) if detect_format(data) == "glb" else parse_gltf(data)


def encode_glb(document: ModelDocument) -> bytes:
    gltf = dict(document.gltf)
    if document.binary:
        gltf["buffers"] = [{"byteLength": len(document.binary)}] + list(gltf.get("buffers", []))[1:]

    json_chunk = _align4(json.dumps(gltf, separators=(",", ":"), sort_keys=True).encode("utf-8"), b" ")
    chunks = struct.pack("<II", len(json_chunk), CHUNK_JSON) + json_chunk
    if document.binary:
        bin_chunk = _align4(document.binary, b"\x00")
        chunks += struct.pack("<II", len(bin_chunk), CHUNK_BIN) + bin_chunk

    header = struct.pack("<4sII", GLB_MAGIC, GLB_VERSION, 12 + len(chunks))
    return header + chunks


def encode_gltf(document: ModelDocument) -> bytes:
    gltf = dict(document.gltf)
    if document.binary:
        uri = "data:application/octet-stream;base64," + base64.b64encode(document.binary).decode("ascii")
        gltf["buffers"] = [{"byteLength": len(document.binary), "uri": uri}]
    return json.dumps(gltf, indent=2, sort_keys=True).encode("utf-8")


class ModelProcessor(Processor):
    """Convert between glTF and GLB containers."""

    kind = AssetKind.MODEL

    def handlers(self):
        return {
            TransformKind.SIMPLIFY: self.unsupported("mesh simplification requires an external tool"),
            TransformKind.BUFFER_COMPRESS: self.unsupported("draco/meshopt encoding requires an external tool"),
            TransformKind.ENCODE: self._encode,
        }

    def decode(self, data: bytes, pipeline: Pipeline) -> ModelDocument:
        # OBJ and FBX are opaque here; they can only be copied
        if pipeline.output_format in ("obj", "fbx"):
            return ModelDocument({}, raw=data, source_format=pipeline.output_format)
        return parse_model(data)

    def finish(self, state: ModelDocument, pipeline: Pipeline) -> bytes:
        if state.output is None:
            raise ProcessorError("Model pipeline has no encode step")
        return state.output

    def _encode(self, state: ModelDocument, step) -> ModelDocument:
        if state.raw is not None:
            if step.format != state.source_format:
                raise ProcessorError(f"Cannot convert {state.source_format} to {step.format}", step.kind)
            state.output = state.raw
        elif step.format == "glb":
            state.output = encode_glb(state)
        elif step.format == "gltf":
            state.output = encode_gltf(state)
        else:
            raise ProcessorError(f"Cannot convert glTF to {step.format}", step.kind)
        return state


def model_info(data: bytes) -> ModelInfo:
    """Mesh, material and vertex statistics for a glTF or GLB file."""
    document = parse_model(data)
    gltf = document.gltf
    accessors = gltf.get("accessors", [])

    def count(index: Optional[int]) -> int:
        if index is None or index >= len(accessors):
            return 0
        return int(accessors[index].get("count", 0))

    info = ModelInfo(
        meshes=len(gltf.get("meshes", [])),
        materials=len(gltf.get("materials", [])),
        textures=len(gltf.get("textures", [])),
        animations=len(gltf.get("animations", [])),
        nodes=len(gltf.get("nodes", [])),
    )
    for mesh in gltf.get("meshes", []):
        for primitive in mesh.get("primitives", []):
            vertices = count(primitive.get("attributes", {}).get("POSITION"))
            info.total_vertices += vertices
            # Non-indexed primitives draw every vertex once
            indices = primitive.get("indices")
            info.total_indices += count(indices) if indices is not None else vertices
    return info


def estimate_lod_levels(info: ModelInfo) -> List[LodLevelEstimate]:
    """Suggested LOD chain for a model of this complexity."""
    levels = [LodLevelEstimate(0, 1.0, 0.0, info.total_indices // 3)]
    if info.total_vertices > 1000:
        levels.append(LodLevelEstimate(1, 0.5, 10.0, info.total_indices // 6))
    if info.total_vertices > 5000:
        levels.append(LodLevelEstimate(2, 0.25, 25.0, info.total_indices // 12))
    if info.total_vertices > 10000:
        levels.append(LodLevelEstimate(3, 0.1, 50.0, info.total_indices // 30))
    return levels
