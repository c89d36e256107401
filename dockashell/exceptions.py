class DockaShellError(Exception):
    """Base exception for all DockaShell errors."""
    pass

class InvalidInputError(DockaShellError):
    """Raised when a caller passes a malformed argument (empty command, bad project name, ...)."""
    pass

class ProjectNotFoundError(DockaShellError):
    """Raised when no configuration exists for the requested project."""
    def __init__(self, project_name: str):
        self.project_name = project_name
        super().__init__(f"Project '{project_name}' not found")

class ConfigurationError(DockaShellError):
    """Raised for configuration-related issues."""
    pass
