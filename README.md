# appbuilder

A command-line toolkit and Python library for the low-level jobs that come
up when packaging desktop applications:

- **Block maps** for differential updates (`appbuilder.blockmap`). Files are
  split into chunks by content-defined Rabin chunking (`appbuilder.chunker`),
  so the map stays stable across insertions, deletions and edits. Each chunk
  gets a BLAKE2b checksum. The map is compressed with gzip or raw deflate and
  is either written to its own file or appended to the input file.
- **Downloads** (`appbuilder.downloader`, `appbuilder.download_parts`):
  redirects are followed by hand, large files are fetched as parallel ranged
  parts, interrupted parts are retried, and an optional SHA-512 is checked.
- **Cached tool archives** (`appbuilder.artifacts`, `appbuilder.tools`,
  `appbuilder.linux_tools`): 7-Zip archives are downloaded, unpacked with
  7-Zip (and `tar` for `.tar.7z`) and kept in a per-user cache directory.
- **Electron downloads and unpacking** (`appbuilder.electron`), with mirrors
  and caching. A damaged cached zip is deleted and fetched again once.
- **Node module discovery** (`appbuilder.dependency_collector`,
  `appbuilder.dependency_tree`). The installed `node_modules` tree of a
  project is walked for npm, pnpm and yarn layouts and reported either per
  `node_modules` directory or as a hoisted, flattened list.
- **Native module rebuilding** (`appbuilder.rebuild`): `prebuild-install` is
  tried first, then a rebuild with npm or yarn.
- **File copying and zip extraction** (`appbuilder.fs`, `appbuilder.zipx`)
  that normalise permissions and keep symlinks.

## Installation

```
pip install .
```

Python 3.10 or later is required. The only third-party dependency is
`requests`. Downloading tool archives needs a 7-Zip executable (`SZA_PATH`,
or `7za`, `7zz` or `7z` on the `PATH`).

## Command line

Installing the package provides the `app-builder` command:

```
app-builder --help
```

Subcommands:

| Command | What it does |
| --- | --- |
| `blockmap -i FILE [-o OUT] [-c gzip\|deflate]` | Build a block map and print size and SHA-512 as JSON. |
| `copy -f FROM -t TO [--hard-link]` | Copy a file, symlink or directory tree. |
| `unzip -i ZIP -o DIR` | Extract a zip archive into a directory (created if needed, not emptied). |
| `download -u URL -o FILE [--sha512 SUM]` | Download a file. |
| `download-artifact -n NAME [-u URL] [--sha512 SUM]` | Download and unpack an archive into the cache; print its directory. |
| `download-electron -c JSON` | Download Electron zips described by a JSON list into the cache. |
| `unpack-electron -c JSON --output DIR [--distMacOsAppName NAME]` | Empty `DIR` and unpack the first configured Electron zip into it; the configuration may be base64-encoded. |
| `node-dep-tree --dir DIR [--flatten] [--exclude-dep NAME ...]` | Print the project's dependency tree as JSON. |
| `rebuild-node-modules` | Read a rebuild configuration as JSON from standard input and rebuild native modules. |
| `prefetch-tools [--osName darwin\|linux\|win32]` | Fetch the AppImage tool set, fpm and zstd into the cache. |
| `ksuid` | Print a newly generated KSUID. |

To build a block map into its own gzip-compressed file:

```
app-builder blockmap --input dist/MyApp.exe --output dist/MyApp.exe.blockmap
```

Without `--output`, the compressed map and its 4-byte big-endian size are
appended to the input file, and the printed JSON also gives `blockMapSize`.
With `--output -` the uncompressed map is written to standard output.

When the environment variable `SZA_ARCHIVE_TYPE` is set, `app-builder`
instead compresses standard input to standard output with 7-Zip, using that
archive type and the level in `SZA_COMPRESSION_LEVEL` (default 9); its
arguments are passed on to 7-Zip.

## Library use

```python
from appbuilder.blockmap import build_block_map, CompressionFormat, DEFAULT_CHUNKER_CONFIGURATION

info = build_block_map("app.exe", DEFAULT_CHUNKER_CONFIGURATION, CompressionFormat.DEFLATE, "app.blockmap")
print(info.to_json())  # {"size":...,"sha512":"..."}
```

```python
from appbuilder.dependency_tree import build_tree

tree = build_tree("path/to/project", flatten=True)
```

With `flatten` each entry gives `name`, `version` and `dir`, and where it
applies `optional`, `hasPrebuildInstall`, `napiVersions` and the nested
`conflictDependency` list.

```python
from appbuilder.fs import copy_using_hardlink
from appbuilder.zipx import unzip

copy_using_hardlink("build/app", "dist/app")
unzip("electron.zip", "out/electron", None)
```

```python
from appbuilder.downloader import Downloader

Downloader().download("https://example.com/file.bin", "file.bin", "")
```

## Environment variables

- `DEBUG`: any value other than `false` enables debug logging.
- `FORCE_COLOR`: forces coloured log output on (`1`, `true`, empty) or off (`0`, `false`).
- `ELECTRON_BUILDER_CACHE`, `ELECTRON_CACHE`, `XDG_CACHE_HOME`: cache directories.
- `ELECTRON_BUILDER_BINARIES_MIRROR` (and its `npm_config_` forms): mirror for tool archives.
- `ELECTRON_MIRROR`, `ELECTRON_CUSTOM_DIR`, `ELECTRON_CUSTOM_FILENAME`: Electron download location.
- `DISABLE_MULTIPART_DOWNLOADING`: download every file as a single part.
- `DOWNLOADER_USER_AGENT`: User-Agent header for downloads.
- `NODE_EXTRA_CA_CERTS`: extra CA certificates to trust for downloads.
- `SZA_PATH`: the 7-Zip executable.
- `USE_SYSTEM_MKSQUASHFS`, `MKSQUASHFS_PATH`: which mksquashfs to use.
- `FORCE_YARN`, `npm_execpath`, `npm_node_execpath`: package manager and node used for rebuilds.

## What it does not do

The package does not build installers or package formats itself (no
AppImage, snap, DMG or fpm packages), convert icons, read code-signing
certificates, edit Windows resources, run Windows tools under Wine, publish
artifacts, or build remotely. It only fetches and caches the tool archives
that such steps use.

## Running the tests

```
pip install .[test]
pytest
```