from coreason_forge.config import ForgeConfig
from coreason_forge.runtime import SandboxRuntime
from coreason_forge.runtimes.docker import DockerRuntime
from coreason_forge.runtimes.e2b import E2BRuntime


class SandboxFactory:
    """
    Factory to create SandboxRuntime instances based on configuration.
    """

    @staticmethod
    def get_runtime(config: ForgeConfig) -> SandboxRuntime:
        """
        Returns a fresh, not yet started instance of the configured SandboxRuntime.
        """
        if config.runtime == "docker":
            return DockerRuntime(
                image=config.docker_image,
                cpu_limit=config.docker_cpu_limit,
                mem_limit=config.docker_mem_limit,
                work_dir=config.app_root,
                exposed_ports=(config.dev_server_port,),
                timeout=config.command_timeout,
            )
        elif config.runtime == "e2b":
            return E2BRuntime(
                api_key=config.e2b_api_key,
                template=config.e2b_template,
                lifetime=config.session_timeout,
                timeout=config.command_timeout,
            )
        else:
            # This should be unreachable due to Pydantic validation, but for safety:
            raise ValueError(f"Unknown runtime: {config.runtime}")  # pragma: no cover
