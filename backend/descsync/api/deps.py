"""Shared dependencies: per-process clients built in the app lifespan"""
import httpx
from fastapi import Request

from descsync.services.credential_vault import CredentialVault
from descsync.services.event_bus import EventQueue
from descsync.services.youtube_gateway import YouTubeGateway


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_vault(request: Request) -> CredentialVault:
    return request.app.state.vault


def get_gateway(request: Request) -> YouTubeGateway:
    return request.app.state.gateway


def get_event_queue(request: Request) -> EventQueue:
    return request.app.state.event_queue
