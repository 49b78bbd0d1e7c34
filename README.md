# modelkit

A library for working with model kits: packages of a model, its datasets,
code and docs, described by a `Kitfile` and stored as OCI artifacts. It
covers references, Kitfile checks, `.kitignore` handling, building
reproducible layer archives, console output, and running a local
development model server.

## Install

```
pip install modelkit
```

For running the tests:

```
pip install "modelkit[test]"
pytest
```

## Modules

- `modelkit.constants`: media types (`MediaType`, `parse_media_type`,
  `format_media_type_for_user`), `validate_compression`, accepted Kitfile
  names (`default_kitfile_names`) and the storage layout under the
  configuration directory (`default_config_path`, `storage_path`,
  `harness_path`, `index_json_path_for_repo`, `repo_for_index_json_path`,
  `tag_index_path_for_repo`).
- `modelkit.reference`: parsing of references such as
  `registry.io/org/repo:tag,extra1,extra2` into a `Reference` plus extra tags
  (`parse_reference`), `reference_is_digest`, `is_model_kit_reference`,
  `format_repository_for_display` and `layer_paths_from_kitfile`. Invalid
  references raise `InvalidReferenceError`.
- `modelkit.paths`: `verify_subpath` (keeps layer paths inside the context
  directory, following symlinks), `path_exists` and `find_kitfile_in_path`;
  failures raise `PathError`.
- `modelkit.ignore`: `.kitignore` patterns with `!` re-inclusion
  (`PatternMatcher`, `read_ignore_file`) and `IgnorePaths`, built by
  `new_ignore` or `new_ignore_from_context`, which also skips files that
  belong to another layer nested inside the one being packed.
- `modelkit.kitfile`: `validate_kitfile` (duplicate or absolute paths,
  invalid model part types; raises `KitfileValidationError`),
  `merge_kitfiles`, and `resolve_kitfile`, which follows a model path that
  refers to another model kit, up to ten levels, and reports cycles.
  Kitfiles are plain mappings using the keys of their JSON form.
- `modelkit.layers`: `compress_layer` packs a file or directory into a tar
  archive (uncompressed, `gzip` or `gzip-fastest`) in a temporary file and
  returns its path with a `Descriptor` (media type, `sha256:` digest, size).
  Headers are cleared of times and owners so archives are reproducible.
- `modelkit.archive`: `extract_file` and `extract_tar` unpack `.tar.gz` and
  `.gz` payloads, refusing names that leave the destination directory
  (`ArchiveError`).
- `modelkit.output`: levelled console output (`LogLevel`, `info`, `debug`,
  `error`, `fatal`, `set_log_level_from_string`, `set_out`, `set_err`) and
  `format_bytes`.
- `modelkit.progress`: tqdm progress bars for packing, unpacking and
  downloading (`generic_progress_bar`, `tar_progress`, `wrap_reader`,
  `new_pull_progress`); all are no-ops when progress bars are disabled
  with `output.set_progress_bars("none")` or stdout is not a terminal.
- `modelkit.registry_errors`: `handle_remote_error` turns a failed registry
  response (status, headers, body) into a `RegistryError` with a readable
  message.
- `modelkit.upload`: `get_upload_format` chooses between a single PUT and
  chunked PATCH uploads (`UploadFormat`) by registry and blob size.
- `modelkit.update`: `check_for_update`, `compare_versions`,
  `is_release_version` and `set_show_notifications` for new-release notes.
- `modelkit.gpu`: `get_gpu_info` and `get_cpu_variant` (AVX/AVX2 detection).
- `modelkit.download` and `modelkit.harness`: download and checksum
  verification of the llamafile server and its UI (`extract_server`,
  `extract_ui`), and `LLMHarness` with `init`, `start` and `stop` for running
  it in the background, plus `print_logs`.

## Example

```python
from modelkit.reference import parse_reference
from modelkit.output import format_bytes
from modelkit.kitfile import validate_kitfile

ref, extra_tags = parse_reference("localhost:5000/org/model:v1,latest")
print(ref.registry, ref.repository, ref.reference, extra_tags)
# localhost:5000 org/model v1 ['latest']

print(format_bytes(6 * 1024 * 1024))  # 6.0 MiB

validate_kitfile({"model": {"name": "m", "path": "model.gguf"},
                  "datasets": [{"name": "d", "path": "data"}]})
```

## What it does not do

There is no command-line program. The package keeps no local model kit
storage of its own (no index or tag bookkeeping, no pulling or pushing of
blobs) and contains no registry client or authentication: `resolve_kitfile`
takes a `fetch` callable that the caller supplies to look up a Kitfile by
reference, and `compress_layer` leaves the resulting archive in a temporary
file for the caller to store.