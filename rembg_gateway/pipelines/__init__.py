from rembg_gateway.pipelines.base import BasePipeline
from rembg_gateway.pipelines.external_tool import SubprocessPipeline
from rembg_gateway.pipelines.background_remove import BackgroundRemovePipeline

__all__ = [
    "BasePipeline",
    "SubprocessPipeline",
    "BackgroundRemovePipeline",
]
