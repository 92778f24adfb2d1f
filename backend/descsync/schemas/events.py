"""Pipeline event payloads

Events are data only. ``name`` discriminates the four kinds so a raw dict
pulled off a queue can be validated back into the right model.
"""
from typing import Annotated, List, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class ChannelSync(BaseModel):
    """Pull the channel's upload list and reconcile local videos"""
    name: Literal["channel.sync"] = "channel.sync"
    user_id: int
    channel_id: int


class VideosUpdate(BaseModel):
    """Recompose and push descriptions for these videos"""
    name: Literal["videos.update"] = "videos.update"
    user_id: int
    video_ids: List[int] = Field(default_factory=list)


class ContainerUpdated(BaseModel):
    name: Literal["container.updated"] = "container.updated"
    user_id: int
    container_id: int


class TemplateUpdated(BaseModel):
    name: Literal["template.updated"] = "template.updated"
    user_id: int
    template_id: int


Event = Annotated[
    Union[ChannelSync, VideosUpdate, ContainerUpdated, TemplateUpdated],
    Field(discriminator="name"),
]

_event_adapter = TypeAdapter(Event)


def parse_event(data: dict) -> Event:
    """Validate a raw payload into its event model

    Raises:
        pydantic.ValidationError: Unknown event name or malformed fields
    """
    return _event_adapter.validate_python(data)
