from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class GenericParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class StreamingProvider(str, Enum):
    TRUSTED = "trusted"
    MIRROR = "mirror"
    MIRROR_ADFREE = "mirror-adfree"


class ExtractedVideo(GenericParams):
    url: str = Field(..., description="Direct media or manifest URL.")
    quality: str = Field("auto", description="Quality label, 'auto' when unknown.")
    is_m3u8: bool = Field(False, alias="isM3U8", description="Whether the URL is an HLS manifest.")
    headers: Dict[str, str] = Field(
        default_factory=dict, description="Headers that must accompany any fetch of the URL (commonly Referer)."
    )


class ExtractionResult(GenericParams):
    success: bool
    videos: Optional[List[ExtractedVideo]] = None
    error: Optional[str] = None
    server: str = Field(..., description="Display name of the extractor that produced this result.")

    @model_validator(mode="after")
    def check_videos(self):
        if self.success and not any(video.url for video in self.videos or []):
            raise ValueError("A successful extraction must carry at least one video with a URL")
        return self

    @classmethod
    def failure(cls, server: str, error: str) -> "ExtractionResult":
        return cls(success=False, error=error, server=server)


class EmbedServer(GenericParams):
    name: str
    url: str
    type: Literal["embed", "download"] = "embed"


class Subtitle(GenericParams):
    url: str
    lang: str
    label: Optional[str] = None


class TimeRange(GenericParams):
    start: float
    end: float


class DirectSourcesResponse(GenericParams):
    provider: StreamingProvider
    type: Literal["direct"] = "direct"
    sources: List[ExtractedVideo]
    subtitles: Optional[List[Subtitle]] = None
    intro: Optional[TimeRange] = None
    outro: Optional[TimeRange] = None
    extracted_from: Optional[str] = Field(None, alias="extractedFrom")


class EmbedServersResponse(GenericParams):
    provider: Literal[StreamingProvider.MIRROR] = StreamingProvider.MIRROR
    type: Literal["embed"] = "embed"
    servers: List[EmbedServer]


class ProxyParams(GenericParams):
    url: str = Field(..., description="The absolute upstream resource address.")
    referer: Optional[str] = Field(
        None, description="Referer to send upstream. Defaults to the configured default referer."
    )


class ExtractorURLParams(GenericParams):
    destination: str = Field(..., description="The embed page URL.", alias="d")


class WatchParams(GenericParams):
    provider: Optional[StreamingProvider] = Field(
        None, description="Provider/mode to use. When omitted the default fallback order is tried."
    )
    dub: bool = Field(False, description="Request the dubbed audio track instead of subtitles.")


class ProbedUrl(GenericParams):
    url: str
    status: int
    response_time: float = Field(..., alias="responseTime")
    error: Optional[str] = None


class HealthStatus(GenericParams):
    available: bool
    last_checked: float = Field(..., alias="lastChecked")
    tested_urls: List[ProbedUrl] = Field(default_factory=list, alias="testedUrls")
    reason: Optional[str] = None
