from typing import Tuple

from dispatcher import config
from dispatcher.utils import logger
from .runtime import ImageBuildError, SandboxRuntime

# minimal execution image: an unprivileged user and nothing else
DOCKERFILE = f"""\
FROM alpine:latest
RUN addgroup -S appgroup && adduser -S {config.SANDBOX_USER} -G appgroup
RUN mkdir /app && chown {config.SANDBOX_USER}:appgroup /app
WORKDIR /app
USER {config.SANDBOX_USER}
"""


def ensure_image(runtime: SandboxRuntime, image: str) -> Tuple[bool, str]:
    """
    Make sure `image` is present, building it from :data:`DOCKERFILE` when
    it is missing. Returns ``(ok, message)``; a failed build is not raised
    because the caller turns it into a verdict.
    """
    if runtime.image_exists(image):
        logger().debug(f"image already present [image={image}]")
        return True, f"Docker image '{image}' is ready."
    logger().info(f"build execution image [image={image}]")
    try:
        runtime.build_image(image, DOCKERFILE)
    except ImageBuildError as exc:
        logger().error(f"build execution image failed [image={image}]: {exc}")
        return False, f"Error building Docker image: {exc}"
    return True, f"Docker image '{image}' built successfully."
