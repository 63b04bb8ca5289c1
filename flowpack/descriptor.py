"""Package descriptor emitter.

Writes the manifest consumed by the native-executable compiler. The asset list
is derived from the packer's result, so it names exactly what the build
produced.
"""

from dataclasses import dataclass
import json
import pathlib

from flowpack import constants
from flowpack.packer import PackResult


@dataclass(frozen=True, slots=True)
class PackageDescriptor:
    """Compiler manifest.

    :ivar name: Package name.
    :ivar binary: Entry file of the executable (the bundle).
    :ivar assets: Glob patterns of files to embed.
    """

    name: str
    binary: str
    assets: tuple[str, ...]

    def to_json_dict(self) -> dict[str, object]:
        """Return the JSON layout (``name``, ``bin``, ``pkg.assets``)."""

        return {
            "name": self.name,
            "bin": self.binary,
            "pkg": {"assets": list(self.assets)},
        }


def descriptor_for(*, name: str, binary: str, pack: PackResult) -> PackageDescriptor:
    """Build the descriptor for one build.

    :param name: Package name.
    :param binary: Bundle file name.
    :param pack: What the packer placed in the output directory.
    :returns: Descriptor.
    """

    assets: list[str] = [
        f"./{constants.DEPS_OUTPUT_DIR}/**",
        f"./{constants.RESOURCES_DIR}/**",
    ]
    for archive in pack.archives:
        assets.append(f"./{archive.name}")
    if pack.flows_file is not None:
        assets.append(f"./{pack.flows_file.name}")
    return PackageDescriptor(name=name, binary=binary, assets=tuple(assets))


def write_descriptor(descriptor: PackageDescriptor, path: pathlib.Path) -> pathlib.Path:
    """Write a descriptor as pretty-printed JSON.

    :param descriptor: Descriptor to write.
    :param path: Destination file.
    :returns: ``path``.
    """

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(descriptor.to_json_dict(), indent=2) + "\n", encoding="utf-8")
    return path
