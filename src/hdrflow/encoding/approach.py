"""Resolution of detected format signals into one encoding approach."""

from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from ..core.video.types import FormatSignal, HdrFormat, DolbyVisionProfile
from ..config import default_config as defaults
from ..utils.logging import get_logger

logger = get_logger(__name__)


class ApproachKind(Enum):
    """Closed set of approach variants."""
    SDR = "sdr"
    HDR = "hdr"
    DOLBY_VISION = "dolby_vision"
    DOLBY_VISION_WITH_HDR10_PLUS = "dolby_vision_with_hdr10_plus"


# Priority table, highest wins. HDR approaches rank by their format.
PRIORITY = {
    (ApproachKind.DOLBY_VISION_WITH_HDR10_PLUS, None): 5,
    (ApproachKind.DOLBY_VISION, None): 4,
    (ApproachKind.HDR, HdrFormat.HDR10_PLUS): 3,
    (ApproachKind.HDR, HdrFormat.HDR10): 2,
    (ApproachKind.HDR, HdrFormat.HLG): 1,
    (ApproachKind.SDR, None): 0,
}

HDR_FORMATS = (HdrFormat.HDR10_PLUS, HdrFormat.HDR10, HdrFormat.HLG)


@dataclass(frozen=True)
class HdrPayload:
    """HDR variant payload.

    Attributes:
        format: One of HDR10, HDR10+ or HLG
        confidence: Confidence of the signal the payload came from
    """
    format: HdrFormat
    confidence: float = 1.0


@dataclass(frozen=True)
class DolbyVisionPayload:
    """Dolby Vision variant payload.

    Attributes:
        profile: Detected profile
        confidence: Detection confidence
        has_rpu: Whether the stream carries RPU data
        has_enhancement_layer: Whether an enhancement layer is present
    """
    profile: DolbyVisionProfile
    confidence: float = 1.0
    has_rpu: bool = True
    has_enhancement_layer: bool = False

    @classmethod
    def from_signal(cls, signal: FormatSignal) -> "DolbyVisionPayload":
        return cls(
            profile=signal.profile,
            confidence=signal.confidence,
            has_rpu=bool(signal.details.get("has_rpu", True)),
            has_enhancement_layer=bool(
                signal.details.get("has_enhancement_layer", signal.profile.is_dual_layer)
            )
        )


@dataclass(frozen=True)
class EncodingApproach:
    """The single authoritative approach for a file.

    Build instances through the ``sdr``, ``hdr_content``, ``dolby_vision``
    and ``dolby_vision_with_hdr10_plus`` constructors. For Dolby Vision the
    ``hdr`` payload describes the base layer used if Dolby Vision has to be
    dropped later; for the compound variant it is the HDR10+ payload.
    """
    kind: ApproachKind
    hdr: Optional[HdrPayload] = None
    dolby_vision: Optional[DolbyVisionPayload] = None

    def __post_init__(self):
        if self.kind is ApproachKind.SDR:
            valid = self.hdr is None and self.dolby_vision is None
        elif self.kind is ApproachKind.HDR:
            valid = (self.hdr is not None and self.dolby_vision is None and
                     self.hdr.format in HDR_FORMATS)
        elif self.kind is ApproachKind.DOLBY_VISION:
            valid = self.dolby_vision is not None and (
                self.hdr is None or self.hdr.format in (HdrFormat.HDR10, HdrFormat.HLG)
            )
        else:
            valid = (self.dolby_vision is not None and self.hdr is not None and
                     self.hdr.format is HdrFormat.HDR10_PLUS)
        if not valid:
            raise ValueError(f"Invalid payload combination for {self.kind.value} approach")

    @classmethod
    def sdr(cls) -> "EncodingApproach":
        return cls(kind=ApproachKind.SDR)

    @classmethod
    def hdr_content(cls, payload: HdrPayload) -> "EncodingApproach":
        return cls(kind=ApproachKind.HDR, hdr=payload)

    @classmethod
    def dolby_vision_content(cls, payload: DolbyVisionPayload,
                             base_layer: Optional[HdrPayload] = None) -> "EncodingApproach":
        return cls(kind=ApproachKind.DOLBY_VISION, dolby_vision=payload, hdr=base_layer)

    @classmethod
    def dolby_vision_with_hdr10_plus(cls, payload: DolbyVisionPayload,
                                     hdr10_plus: HdrPayload) -> "EncodingApproach":
        return cls(
            kind=ApproachKind.DOLBY_VISION_WITH_HDR10_PLUS,
            dolby_vision=payload,
            hdr=hdr10_plus
        )

    @property
    def priority(self) -> int:
        """Rank in the priority table."""
        fmt = self.hdr.format if self.kind is ApproachKind.HDR else None
        return PRIORITY[(self.kind, fmt)]

    @property
    def needs_dolby_vision(self) -> bool:
        return self.kind in (ApproachKind.DOLBY_VISION, ApproachKind.DOLBY_VISION_WITH_HDR10_PLUS)

    @property
    def needs_hdr10_plus(self) -> bool:
        return (
            self.kind is ApproachKind.DOLBY_VISION_WITH_HDR10_PLUS or
            (self.kind is ApproachKind.HDR and self.hdr.format is HdrFormat.HDR10_PLUS)
        )

    @property
    def is_hdr(self) -> bool:
        return self.kind is not ApproachKind.SDR

    @property
    def label(self) -> str:
        if self.kind is ApproachKind.SDR:
            return "SDR"
        if self.kind is ApproachKind.HDR:
            return self.hdr.format.label
        profile = self.dolby_vision.profile.value
        if self.kind is ApproachKind.DOLBY_VISION:
            return f"Dolby Vision (profile {profile})"
        return f"Dolby Vision (profile {profile}) + HDR10+"

    def without_dolby_vision(self) -> "EncodingApproach":
        """Approach to fall back to when Dolby Vision cannot be carried.

        Never drops below HDR: Dolby Vision masters carry a PQ base layer,
        so HDR10 is assumed when no other HDR payload is known.
        """
        if self.kind is ApproachKind.DOLBY_VISION_WITH_HDR10_PLUS:
            return EncodingApproach.hdr_content(self.hdr)
        if self.kind is ApproachKind.DOLBY_VISION:
            base = self.hdr or HdrPayload(
                format=HdrFormat.HDR10, confidence=self.dolby_vision.confidence
            )
            return EncodingApproach.hdr_content(base)
        return self

    def without_hdr10_plus(self) -> "EncodingApproach":
        """Approach to fall back to when HDR10+ metadata cannot be carried."""
        if self.kind is ApproachKind.DOLBY_VISION_WITH_HDR10_PLUS:
            return EncodingApproach.dolby_vision_content(self.dolby_vision)
        if self.needs_hdr10_plus:
            return EncodingApproach.hdr_content(
                HdrPayload(format=HdrFormat.HDR10, confidence=self.hdr.confidence)
            )
        return self


def resolve_approach(
    signals: Mapping[HdrFormat, FormatSignal],
    threshold: float = defaults.DETECTION_THRESHOLD,
    dolby_vision_enabled: bool = True,
    hdr10_plus_enabled: bool = True,
    preserve_profile_7: bool = True
) -> EncodingApproach:
    """Pick the authoritative approach from detector signals.

    Priority: Dolby Vision + HDR10+ > Dolby Vision > HDR10+ > HDR10 > HLG > SDR.
    The compound variant is only built when both constituent signals clear
    the threshold independently.

    Args:
        signals: Signals keyed by format, missing keys count as absent
        threshold: Minimum confidence for a signal to count
        dolby_vision_enabled: Whether Dolby Vision may be preserved
        hdr10_plus_enabled: Whether HDR10+ may be preserved
        preserve_profile_7: Whether dual-layer profile 7 may be preserved

    Returns:
        Resolved approach, SDR when nothing clears the threshold. A Dolby
        Vision signal that cannot be preserved still resolves to HDR.
    """
    def passing(fmt: HdrFormat) -> Optional[FormatSignal]:
        signal = signals.get(fmt)
        return signal if signal is not None and signal.passes(threshold) else None

    dv = None
    rejected_dv = None
    dv_signal = passing(HdrFormat.DOLBY_VISION)
    if dv_signal is not None:
        payload = DolbyVisionPayload.from_signal(dv_signal)
        if not dolby_vision_enabled:
            logger.info("Dolby Vision disabled, keeping its HDR base layer")
            rejected_dv = payload
        elif not payload.has_rpu:
            logger.warning("Dolby Vision signalled without RPU data, falling back to HDR")
            rejected_dv = payload
        elif payload.profile.is_dual_layer and not preserve_profile_7:
            logger.warning("Dolby Vision profile 7 preservation disabled, falling back to HDR")
            rejected_dv = payload
        else:
            dv = payload
    hdr10_plus = passing(HdrFormat.HDR10_PLUS) if hdr10_plus_enabled else None

    base_layer = None
    for fmt in (HdrFormat.HDR10, HdrFormat.HLG):
        signal = passing(fmt)
        if signal is not None:
            base_layer = HdrPayload(format=fmt, confidence=signal.confidence)
            break

    if dv is not None and hdr10_plus is not None:
        return EncodingApproach.dolby_vision_with_hdr10_plus(
            dv, HdrPayload(format=HdrFormat.HDR10_PLUS, confidence=hdr10_plus.confidence)
        )
    if dv is not None:
        return EncodingApproach.dolby_vision_content(dv, base_layer)
    if hdr10_plus is not None:
        return EncodingApproach.hdr_content(
            HdrPayload(format=HdrFormat.HDR10_PLUS, confidence=hdr10_plus.confidence)
        )
    if rejected_dv is not None:
        return EncodingApproach.dolby_vision_content(rejected_dv, base_layer).without_dolby_vision()
    if base_layer is not None:
        return EncodingApproach.hdr_content(base_layer)
    return EncodingApproach.sdr()
