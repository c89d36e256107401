from setuptools import find_packages, setup
from pathlib import Path

# Function to read dependencies from requirements.txt
def load_requirements(filename_req="requirements.txt"):
    requirements_path = Path(__file__).resolve().parent / filename_req
    if not requirements_path.exists():
        print(f"Warning: '{filename_req}' not found at {requirements_path}. Using a fallback list of dependencies for setup.py.")
        # Keep in sync with requirements.txt
        return [
            "docker>=7.0,<8.0",
            "loguru>=0.7,<0.8",
            "pydantic>=2.7,<3.0",
            "python-dotenv>=1.0,<2.0",
            "mcp>=1.2,<2.0",
        ]
    with open(requirements_path, "r", encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip() and not line.startswith("#")]

readme_path = Path(__file__).resolve().parent / "README.md"
if readme_path.exists():
    with open(readme_path, "r", encoding="utf-8") as fh:
        long_description = fh.read()
else:
    long_description = "DockaShell - sandboxed, traced shell execution in per-project Docker containers for AI agents over MCP."

setup(
    name="dockashell",
    version="0.1.0",
    author="DockaShell Project",
    description="DockaShell: run commands, apply patches and write files inside per-project Docker containers, with an append-only trace log, exposed over the Model Context Protocol.",
    long_description=long_description,
    long_description_content_type="text/markdown",

    packages=find_packages(exclude=["*.tests", "*.tests.*", "tests.*", "tests"]),
    py_modules=["run_mcp_server"],

    install_requires=load_requirements("requirements.txt"),
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },

    python_requires=">=3.11, <3.14",

    entry_points={
        "console_scripts": [
            "dockashell-mcp=dockashell.mcp.server:main",
        ],
    },

    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Application Frameworks",
        "Topic :: System :: Systems Administration",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Operating System :: OS Independent",
    ],
    keywords="docker sandbox mcp agent shell trace",
    include_package_data=True,
)
