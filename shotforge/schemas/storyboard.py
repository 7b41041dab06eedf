"""Pydantic schemas for storyboard input data.

These models describe the caller-owned inputs of a generation run: the
storyboard shots (work items) and the character/location libraries used to
enrich prompts. The orchestrators treat every instance as read-only, so the
models are frozen.

All schemas use Pydantic v2 syntax with model_config instead of class Config.
"""

import enum

from pydantic import BaseModel, ConfigDict, Field


class AspectRatio(str, enum.Enum):
    """Output aspect ratios supported by the image backend."""

    SQUARE = "1:1"
    STANDARD = "4:3"
    PORTRAIT = "3:4"
    WIDE = "16:9"
    MOBILE = "9:16"
    CINEMA = "21:9"


class ImageSize(str, enum.Enum):
    """Output resolutions supported by the image backend."""

    SD = "480P"
    HD = "720P"
    FHD = "1080P"
    K2 = "2K"
    K4 = "4K"


class ArtStyle(str, enum.Enum):
    """Rendering styles understood by the generation backend."""

    STUDIO_GHIBLI = "studio_ghibli"
    MAKOTO_SHINKAI = "makoto_shinkai"
    MODERN_SHONEN = "modern_shonen"
    RETRO_90S = "retro_90s"
    KOREAN_WEBTOON = "korean_webtoon"
    CHINESE_MANHUA = "chinese_manhua"
    GUOFENG_INK = "guofeng_ink"
    CYBERPUNK_ANIME = "cyberpunk_anime"
    CG_GAME_ART = "cg_game_art"
    REALISTIC = "realistic"


class MotionType(str, enum.Enum):
    AUTO = "auto"
    DOLLY_IN = "dolly_in"
    DOLLY_OUT = "dolly_out"
    PAN_LEFT = "pan_left"
    PAN_RIGHT = "pan_right"
    TILT_UP = "tilt_up"
    TILT_DOWN = "tilt_down"
    ROTATE_CW = "rotate_cw"
    ROTATE_CCW = "rotate_ccw"
    CUSTOM = "custom"


class VideoMotionConfig(BaseModel):
    """Motion settings applied when animating a generated image."""

    model_config = ConfigDict(frozen=True)

    intensity: int = Field(default=5, ge=1, le=10)
    motion_type: MotionType = MotionType.AUTO
    motion_prompt: str | None = None
    custom_instruction: str | None = None
    duration: float = Field(default=5.0, gt=0, description="Clip length in seconds")
    is_loop: bool = False


class CharacterForm(BaseModel):
    """One visual variant of a character (costume, age, ...)."""

    model_config = ConfigDict(frozen=True)

    id: str
    form_name: str = ""
    prompt: str = ""
    front_view_url: str | None = None
    multi_view_url: str | None = None


class Character(BaseModel):
    """Character library entry used for prompt and reference enrichment."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    bio: str = ""
    project_id: str | None = None
    forms: tuple[CharacterForm, ...] = ()
    reference_image_url: str | None = None


class LocationForm(BaseModel):
    """One visual variant of a location (day, night, interior, ...)."""

    model_config = ConfigDict(frozen=True)

    id: str
    form_name: str = ""
    prompt: str = ""
    url: str | None = None


class Location(BaseModel):
    """Location library entry used for prompt and reference enrichment."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    project_id: str | None = None
    forms: tuple[LocationForm, ...] = ()
    reference_image_url: str | None = None


class StoryboardItem(BaseModel):
    """A single storyboard shot: the unit of work for one generation task.

    Only ``id`` is required. Text fields default to empty strings so prompt
    enrichment can treat "absent" and "empty" the same way.

    Character Lists:
        ``characters`` is a free-text name list separated by ",", "，" or "、".
    """

    model_config = ConfigDict(frozen=True)

    id: str
    shot_number: str = ""
    description: str = ""
    camera_angle: str = ""
    movement: str = ""
    location: str = ""
    characters: str = ""
    dialogue: str = ""
    sfx: str = ""
    ai_prompt: str = ""
    shot_type: str | None = None
    action: str | None = None
    lighting: str | None = None
    duration: float | None = None
    audio_description: str | None = None


class StoryboardProject(BaseModel):
    """A storyboard produced from a script, owned by a project."""

    model_config = ConfigDict(frozen=True)

    id: str
    project_id: str
    title: str = ""
    script_content: str = ""
    items: tuple[StoryboardItem, ...] = ()
