# aquabook

`aquabook` turns special code blocks in Markdown books into HTML elements
that carry ownership and permission analyses of the code. It works as an
mdBook preprocessor. Each `aquascope` block is run through the
`cargo aquascope` tool. The results are cached, and the block is replaced by
an empty `<div class="aquascope-embed">` whose `data-*` attributes hold
the code, annotations, operations, configuration and responses as JSON.

It also ships a small HTTP server that runs the same analyses on request.
The analyses run either inside a resource-limited Docker container or
directly on the host.

## Installation

```
pip install aquabook
```

Running the analyses needs the following on the `PATH`:

- `cargo`, with the `aquascope` and `miri` subcommands installed for the
  toolchain named in your `rust-toolchain.toml`;
- `rustup`.

The server in Docker mode also needs the `docker` command and an image
named `aquascope`.

## Writing blocks

A block starts with `` ```aquascope ``. After it come one or more
operations joined by `+`, then optional comma-separated settings:

````markdown
```aquascope,interpreter+permissions,shouldFail,showFlows
#fn main() {
let x = 1;`(focus,paths:x)`
`[]`let y = 2;`{}`
#}
```
````

A setting written as `key=value` keeps its value, and a bare `key` means
`true`. `shouldFail` passes `--should-fail` to `cargo aquascope`, and
`showFlows` passes `--show-flows`.

Inside the code:

- a line starting with `#` is hidden in the rendered output. Start it with
  `\#` to keep a literal `#`.
- `` `[]` `` marks a point where the interpreter shows program state.
- `` `(focus,paths:x,rxpaths:y)` `` focuses the stepper on that line. It can
  also focus on paths matched literally (`paths`) or by regular
  expression (`rxpaths`).
- `` `{}` `` focuses permission boundaries on that line.

Inline permission badges can be written anywhere in the text:

```markdown
The variable has @Perm{read} and @Perm[lost]{own}.
```

The valid permissions are `read`, `write`, `own` and `flow`. The optional
modifier is one of `[gained]`, `[lost]` or `[missing]`. Any other
permission or modifier raises `InvalidPermissionError`.

## Using the preprocessor

Register the command in your `book.toml`:

```toml
[preprocessor.aquascope]
command = "aquabook"
```

mdBook then calls `aquabook` in two ways:

- `aquabook supports <renderer>` exits with status 0 for `html` and 1
  otherwise.
- `aquabook` reads the `[context, book]` JSON pair from standard input. It
  rewrites every chapter's content and writes the book back to standard
  output. On failure it prints `Error: ...` to standard error and exits
  with status 1.

The command takes two options:

- `--toolchain-file PATH` is the toolchain file to read `toolchain.channel`
  from. The default is `rust-toolchain.toml` in the current directory.
- `--cache PATH` is the cache file. The default is `.aquascope-cache` in
  the current directory.

The cache is a gzip-compressed JSON file keyed by each block's operations,
settings and code. Annotations are not part of the key. The file is only
rewritten when new results were added. Delete it to force every block to
be analysed again. Each analysis command is stopped after 10 seconds.

From Python, `AquascopePreprocessor.create(toolchain_file, cache_path)` in
`aquabook.preprocessor` sets up the preprocessor. Its `replacements(content)`
method returns `(range, html)` pairs, and `save_cache()` writes the cache.
`apply_replacements(content, replacements)` and
`process_book(book, preprocessor)` in `aquabook.cli` apply the pairs to a
chapter or to a whole book. `parse_annotations` (in `aquabook.annotations`),
`AquascopeBlock.parse_all` (in `aquabook.block`) and `parse_perms` (in
`aquabook.permissions`) expose the parsers on their own.

## Running the server

```
aquabook-serve
```

The server listens on `127.0.0.1:8008` by default. It is configured from
the environment:

| Variable                   | Meaning                                         |
|----------------------------|-------------------------------------------------|
| `AQUASCOPE_SERVER_ADDRESS` | IP address to bind (default `127.0.0.1`)        |
| `AQUASCOPE_SERVER_PORT`    | port to bind (default `8008`)                   |
| `AQUASCOPE_NO_DOCKER`      | if set, run analyses on the host, not in Docker |

Routes:

- `GET /hi` returns `HELLO!`.
- `POST /permissions` and `POST /interpreter` take a JSON body
  `{"code": "...", "config": {...}}`. They answer with
  `{"success": ..., "stdout": "...", "stderr": "..."}`.

`success` is true when the analysis wrote anything to standard output. A
`shouldFail` key in `config` passes `--should-fail` to the interpreter.

Each request gets a fresh Cargo project, which is removed afterwards. In
Docker mode, each container is limited to half a CPU, 512 MB of memory, no
swap and 32 processes. Commands are stopped after 20 seconds.

Errors are answered as follows:

- A body that is not JSON, or that lacks `code`, is answered with
  `{"error": "..."}`.
- A failure to create the container or to run the analysis is answered
  with status 500 and a text message.
- An unknown route is answered with status 404.

All responses allow any origin.

For embedding, `create_app(container_factory)` in `aquabook.server` builds
the aiohttp application. `Container.create(use_docker)` in
`aquabook.container` gives direct access to a workspace.

## What it does not do

- `aquabook` performs no analysis itself. Every result comes from running
  `cargo aquascope`, which must be installed separately.
- It does not ship or link the front-end script and stylesheet that turn
  the `aquascope-embed` elements into interactive diagrams. Without them,
  the book shows empty elements. Add them to the book yourself, for example
  through `additional-js` and `additional-css` in `book.toml`.

## Development

```
pip install -e ".[test]"
pytest
```