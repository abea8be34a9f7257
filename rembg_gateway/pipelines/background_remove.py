from rembg_gateway.core.config import Settings
from rembg_gateway.pipelines.external_tool import SubprocessPipeline


class BackgroundRemovePipeline(SubprocessPipeline):
    """Remove background from images with the rembg command line tool.

    rembg reads one image on stdin and writes the cut-out PNG to stdout
    when invoked with its ``i`` subcommand and no file arguments.
    """

    name = "background-remove"

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackgroundRemovePipeline":
        return cls(settings.rembg_command, timeout=settings.rembg_timeout)
