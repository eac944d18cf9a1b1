"""x265 parameter derivation for the external encoder."""

from typing import Dict, Iterable, Optional, Tuple

from ..core.video.types import HdrFormat, VideoMetadata
from .adjustments import EncodingAdjustments, vbv_settings
from .approach import ApproachKind, EncodingApproach

# Used when an HDR10 source carries no mastering display / light level
DEFAULT_MASTER_DISPLAY = "G(13250,34500)B(7500,3000)R(34000,16000)WP(15635,16450)L(10000000,1)"
DEFAULT_MAX_CLL = "1000,400"


def build_x265_params(
    approach: EncodingApproach,
    adjustments: EncodingAdjustments,
    metadata: Optional[VideoMetadata] = None,
    external: Iterable[Tuple[str, str]] = ()
) -> Dict[str, str]:
    """Derive x265 parameters for an approach.

    Args:
        approach: Resolved approach
        adjustments: Calculated adjustments
        metadata: Source metadata for static HDR values
        external: Extra key/value pairs, e.g. ``dhdr10-info``

    Returns:
        Ordered parameter mapping, flags have an empty value
    """
    params: Dict[str, str] = {}

    if approach.kind is ApproachKind.SDR:
        params.update(colorprim="bt709", transfer="bt709", colormatrix="bt709")
    else:
        hlg = approach.kind is ApproachKind.HDR and approach.hdr.format is HdrFormat.HLG
        params.update(
            colorprim="bt2020",
            transfer="arib-std-b67" if hlg else "smpte2084",
            colormatrix="bt2020nc"
        )
        params["output-depth"] = "10"
        master_display = metadata.mastering_display if metadata else None
        max_cll = None
        if metadata and metadata.max_cll:
            max_cll = f"{metadata.max_cll},{metadata.max_fall or 0}"
        if not hlg:
            params["master-display"] = master_display or DEFAULT_MASTER_DISPLAY
            params["max-cll"] = max_cll or DEFAULT_MAX_CLL
            params["hdr10"] = ""
            params["hdr10-opt"] = ""
        else:
            if master_display:
                params["master-display"] = master_display
            if max_cll:
                params["max-cll"] = max_cll
        params["repeat-headers"] = ""

    vbv = vbv_settings(adjustments)
    if vbv is not None:
        bufsize, maxrate = vbv
        params["vbv-bufsize"] = str(bufsize)
        params["vbv-maxrate"] = str(maxrate)

    for key, value in external:
        params[key] = value
    return params


def format_x265_params(params: Dict[str, str]) -> str:
    """Join parameters into an ``-x265-params`` string."""
    return ":".join(key if value == "" else f"{key}={value}" for key, value in params.items())
