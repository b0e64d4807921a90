# mikrohosts

mikrohosts downloads hosts files, such as ad and tracker block lists, and
parses them. From them it builds RouterOS scripts that add static DNS
entries, and each entry points a listed hostname at an address you choose.
The scripts are served over HTTP, so a router can fetch and import them by
itself.

## Installation

```
pip install mikrohosts
```

## Running the server

```
mikrohosts serve --config ./configs/config.yml --resources-dir ./web
```

Each `serve` option also has an environment variable. When both are set, the
environment variable wins:

| Flag | Environment | Default |
|------|-------------|---------|
| `-l`, `--listen` | `LISTEN_ADDR` | `0.0.0.0` |
| `-p`, `--port` | `LISTEN_PORT` | `8080` |
| `-r`, `--resources-dir` | `RESOURCES_DIR` | `web` next to the started program |
| `-c`, `--config` | `CONFIG_PATH` | `configs/config.yml` next to the started program |
| `--caching-engine` | `CACHING_ENGINE` | `memory` (or `redis`) |
| `--cache-ttl` | `CACHE_TTL` | `30m` (durations like `50s`, `1h30m`) |
| `--redis-dsn` | `REDIS_DSN` | `redis://127.0.0.1:6379/0` |

Options are checked before the server starts:

- the listen address must be an IP address;
- the resources directory must exist;
- the config file must exist;
- the caching engine must be `memory` or `redis`;
- the redis DSN must parse when the engine is `redis`;
- the cache lifetime must be a valid duration.

An empty resources directory (`-r ""`) turns static file serving off.

The global options `-v/--verbose`, `--debug` and `--log-json` set how logs are
written. Logs go to stderr, either as coloured console lines or as JSON lines.

The server stops on SIGINT or SIGTERM. When a command fails, its error goes to
stderr and the exit code is 1.

### Endpoints

- `GET /script/source?sources_urls=...` returns the generated RouterOS
  script. `sources_urls` takes URLs separated by commas; the config's
  `max_sources` sets how many are allowed. These parameters are optional:
  - `format`: only `routeros` is supported.
  - `limit`: a positive integer.
  - `redirect_to`: an IP address.
  - `excluded_hosts`: comma-separated, at most 32.

  Each source is cached for the cache lifetime. Hosts that contain `"` or
  `\` are skipped.
- `GET /api/settings` returns the public settings as JSON: sources, limits,
  redirect address, comment, excluded hosts and cache lifetime.
- `GET /api/version` returns the version as JSON.
- `GET /metrics` returns Prometheus text metrics. These cover script
  generation (cache hits and misses, generation time), the process and the
  interpreter.
- `GET /live` and `GET /ready` are the health probes. `/ready` also pings
  redis when redis is the caching engine.
- Any other path serves static files from the resources directory. If the
  directory holds `__error__.html`, it is used as the error page template.

## Configuration

```yaml
sources:
  - uri: https://example.com/hosts.txt
    name: Example list
    description: Ad servers
    enabled: true
    count: 1000

router_script:
  redirect:
    address: 127.0.0.1
  exclude:
    hosts: [localhost]
  comment: "ADBlock"
  max_sources: 10
  max_source_size: 2097152
```

Before the file is parsed, references to environment variables are replaced.
The supported forms are `$VAR`, `${VAR}`, `${VAR:-default}`, `${VAR-default}`,
`${VAR:=default}`, `${VAR=default}`, `${VAR:+alt}` and `${VAR+alt}`, and `$$`
gives a literal dollar sign. Unknown fields, duplicate keys and values of the
wrong type are rejected with `mikrohosts.config.ConfigError`.

## Other commands

```
mikrohosts version
mikrohosts healthcheck --port 8080
```

`version` prints the application version and the Python version.

`healthcheck` (aliases `chk`, `health`, `check`) requests
`http://127.0.0.1:<port>/live` and fails unless the answer is 200. When
`LISTEN_PORT` is set, it takes the place of `--port`.

## Library use

```python
import io
from mikrohosts.hostsfile import parse
from mikrohosts.mikrotik import DNSStaticEntry, RenderingOptions, render

records = parse(b"0.0.0.0 ads.example.com\n")
entries = [DNSStaticEntry(address="127.0.0.1", name=r.host) for r in records]
out = io.StringIO()
render(entries, out, RenderingOptions(prefix="add"))
print(out.getvalue())
# add address=127.0.0.1 disabled=no name="ads.example.com"
```

`parse` accepts text, bytes, or an iterable of lines such as an open file. It
returns `Record` objects with `ip`, `host` and `additional_hosts`.

`render` skips entries that have no address or no name and regexp. It returns
the number of characters written.

## What is not included

The package ships no web interface files and no sample configuration file.
Both default paths point next to the started program, so in practice you
pass `--config` yourself, and either pass `--resources-dir` with your own
static files or turn static serving off with `-r ""`.