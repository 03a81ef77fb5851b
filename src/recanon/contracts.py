"""Public request/response models of the Gateway.

These shapes are versioned independently of the renderer's native API;
the Gateway translates between the two. Field aliases are the camelCase
names used on the wire.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from recanon.kernel.verification import (
    HashMatchType,
    Mismatch,
    RenderVerification,
    verify_loop,
    verify_static,
)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class RendererMetadata(_WireModel):
    """Renderer-reported facts about a render."""
    protocol: Optional[str] = None
    protocol_version: Optional[str] = Field(default=None, alias="protocolVersion")
    sdk_version: Optional[str] = Field(default=None, alias="sdkVersion")
    renderer_version: Optional[str] = Field(default=None, alias="rendererVersion")
    node: Optional[str] = None
    timestamp: Optional[str] = None
    deterministic: Optional[bool] = None


class RenderResult(_WireModel):
    """Normalized render output, identical in shape for both modes.

    ``image_hash`` is the static image hash or, in loop mode, the poster
    hash. Hashes are computed by the Gateway over the bytes it received.
    """
    mode: Literal["static", "loop"]
    image_hash: str = Field(alias="imageHash")
    output_base64: str = Field(alias="outputBase64")
    mime: str = "image/png"
    animation_hash: Optional[str] = Field(default=None, alias="animationHash")
    animation_base64: Optional[str] = Field(default=None, alias="animationBase64")
    frames: Optional[int] = None
    fps: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    metadata: RendererMetadata = Field(default_factory=RendererMetadata)


class VerifyResult(_WireModel):
    """Outcome of a verify-by-re-render call.

    Static results carry expected/computed hash; loop results carry both
    poster and animation pairs with per-hash flags.
    """
    mode: Literal["static", "loop"]
    verified: bool
    expected_hash: Optional[str] = Field(default=None, alias="expectedHash")
    computed_hash: Optional[str] = Field(default=None, alias="computedHash")
    expected_poster_hash: Optional[str] = Field(default=None, alias="expectedPosterHash")
    computed_poster_hash: Optional[str] = Field(default=None, alias="computedPosterHash")
    poster_verified: Optional[bool] = Field(default=None, alias="posterVerified")
    expected_animation_hash: Optional[str] = Field(default=None, alias="expectedAnimationHash")
    computed_animation_hash: Optional[str] = Field(default=None, alias="computedAnimationHash")
    animation_verified: Optional[bool] = Field(default=None, alias="animationVerified")
    hash_match_type: HashMatchType = Field(alias="hashMatchType")
    mismatches: List[Mismatch] = Field(default_factory=list)
    metadata: RendererMetadata = Field(default_factory=RendererMetadata)

    @classmethod
    def from_verification(
        cls,
        result: RenderVerification,
        metadata: Optional[RendererMetadata] = None,
    ) -> "VerifyResult":
        fields: Dict[str, Any] = {
            "mode": result.mode,
            "verified": result.verified,
            "hash_match_type": result.hash_match_type,
            "mismatches": result.mismatches,
            "metadata": metadata or RendererMetadata(),
        }
        if result.mode == "static":
            image = result.check("image")
            fields.update(expected_hash=image.expected, computed_hash=image.computed)
        else:
            poster = result.check("poster")
            animation = result.check("animation")
            fields.update(
                expected_poster_hash=poster.expected,
                computed_poster_hash=poster.computed,
                poster_verified=poster.verified,
                expected_animation_hash=animation.expected,
                computed_animation_hash=animation.computed,
                animation_verified=animation.verified,
            )
        return cls(**fields)

    def to_verification(self) -> RenderVerification:
        """Re-derive the engine result from the expected/computed pairs."""
        if self.mode == "static":
            return verify_static(self.expected_hash, self.computed_hash)
        return verify_loop(
            self.expected_poster_hash,
            self.expected_animation_hash,
            self.computed_poster_hash,
            self.computed_animation_hash,
        )


class HealthStatus(_WireModel):
    """Reachability of the renderer as seen through the Gateway."""
    available: bool
    latency: Optional[int] = None  # milliseconds
    renderer: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
