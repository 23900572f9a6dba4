"""ASGI entrypoint for the crop doctor API."""

from crop_doctor.api.app import create_app
from crop_doctor.containers import build_container

app = create_app(build_container())
