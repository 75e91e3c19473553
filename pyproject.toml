[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "omnistock"
version = "1.0.0"
description = "Real-time multi-warehouse inventory sync for omnichannel retail."
requires-python = ">=3.10"
keywords = ["inventory", "warehouse", "omnichannel", "retail", "stock", "redis-streams", "slack"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Office/Business",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
]
dependencies = [
    "flask>=2.3",
    "redis>=4.5",
    "requests>=2.28",
    "sqlalchemy>=2.0",
    "python-dotenv>=1.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "responses>=0.23",
]

[project.scripts]
omnistock = "omnistock.app:main"

[tool.hatch.build.targets.wheel]
packages = ["omnistock"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
ignore_missing_imports = true
