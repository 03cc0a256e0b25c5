[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tlvsec"
version = "0.1.0"
description = "A small TLV-framed secure channel: ECDH handshake, certificate checks, AES-256-CBC with HMAC-SHA256"
requires-python = ">=3.10"
dependencies = [
    "cryptography",
]
keywords = ["tlv", "handshake", "ecdh", "hmac", "aes", "secure-channel", "certificate"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security :: Cryptography",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
tlvsec-server = "tlvsec.server:main"
tlvsec-client = "tlvsec.client:main"
tlvsec-gen-cert = "tlvsec.gen_cert:main"

[tool.hatch.build.targets.wheel]
packages = ["tlvsec"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
