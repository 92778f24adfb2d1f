"""Pydantic schemas for templates, containers and video variables"""
from typing import List, Optional
from pydantic import BaseModel, Field

from descsync.utils.templates import DEFAULT_SEPARATOR


class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    content: str = ""


class TemplateUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    content: Optional[str] = None


class ContainerCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    template_ids: List[int] = Field(default_factory=list)
    separator: str = DEFAULT_SEPARATOR


class ContainerUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    template_ids: Optional[List[int]] = None
    separator: Optional[str] = None


class AssignVideoRequest(BaseModel):
    """container_id of None unassigns the video"""
    container_id: Optional[int] = None


class VariableValue(BaseModel):
    template_id: int
    name: str = Field(..., min_length=1, max_length=255)
    value: str = ""


class VariablesUpdate(BaseModel):
    variables: List[VariableValue]
