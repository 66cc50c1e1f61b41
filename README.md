# omamori

A small local DNS server. It answers names on its block list with
`0.0.0.0` and forwards all other names to upstream resolvers. Upstream
answers are kept in a cache until their TTL runs out.

## What it does

- Listens for DNS queries over UDP on `127.0.0.1`, using the port from the
  configuration (53 by default). Only the first question of each query is
  read. Malformed packets get no reply.
- Keeps the names from the site map file in a radix tree, with their labels
  reversed (`ads.example.com` is stored as `com.example.ads`). Names are
  matched exactly, so blocking a name does not block its subdomains.
- Answers a name that is in the map file with a single 4-byte record of
  `0.0.0.0` and a TTL of 600. The question's type and class are used. This
  happens whatever IP the map file gives for that name, because the stored IP
  is not used in answers.
- Answers repeated queries from an LRU cache (`omamori.cache.LRUCache`, 1000
  entries by default). A background thread removes expired entries every
  five seconds.
- Forwards other queries to `upstream1` and then to `upstream2`. The defaults
  are `1.1.1.1` and `208.67.220.220`. The wait for each server is one second.
  Only IPv4 upstream addresses are used.
- Can point the operating system's resolver at `127.0.0.1` when the server
  starts, and restore the saved settings when it stops
  (`omamori.dns_config.SystemDNSManager`). Each platform uses a different tool:
  - Linux: `resolvectl` with `/etc/systemd/resolved.conf`, or else
    `/etc/resolv.conf`.
  - macOS: `networksetup`.
  - Windows: `netsh`.
  - Rooted Android: `setprop`, or iptables NAT rules if that fails.

## Installation

```
pip install .
```

To install the test tools as well and run the tests:

```
pip install ".[test]"
pytest
```

## Running

```
omamori
```

Options:

- `--host ADDRESS`: the address to listen on. The default is `127.0.0.1`.
- `--config-dir DIR`: the directory that holds the `omamori` config folder.
  The default is the user configuration directory.
- `--blocklist-url URL`: a hosts file to download into the site map file if
  that file is missing.
- `--no-system-dns`: leave the system resolver settings alone.

Log and error events are printed to the console with timestamps. Stop the
server with Ctrl+C. On the way out it restores the system DNS settings.
Binding port 53 and changing the system DNS settings need root or
Administrator rights.

## Configuration

On its first start, omamori creates an `omamori` directory with a `cert/`
subdirectory inside it. It then runs `openssl` to make a self-signed
certificate and key there, and writes `config.json`. The file holds these
keys:

- `upstream1` and `upstream2`
- `port`
- `map_file`
- `cert_path` and `key_path`

On later starts, a value from the file is used only if it is valid:

- The upstreams must be valid IP addresses.
- The port must be between 1 and 65534.
- The paths must exist.

The site map file (`map.txt` by default) uses hosts format. Each line is
`<ip> <domain>`, and anything after the domain is ignored. Empty lines and
lines starting with `#` are skipped. If the file is missing and no
`--blocklist-url` is given, the server starts with an empty block list.

## Library use

- `omamori.radix.RadixTree` provides `insert`, `search`, `delete` and `items`.
- `omamori.cache.LRUCache` provides `get`, `set`, `remove`, `remove_expired`,
  `start_cleanup` and `close`. `Record` and `RecordType` go with it.
- `omamori.packet` provides `decode_query`, `decode_header`,
  `decode_question`, `decode_answers`, `encode_domain_name`, and `Header`,
  `Question`, `Answer` and `Query`, each with `encode`. Errors raise
  `PacketError`.
- `omamori.config` provides `default_config`, `load_config`, `save_config`,
  `ensure_default_config`, `update_config`, `load_blocked_sites`,
  `update_site_list`, `list_site_map`, `parse_hosts` and `reverse_domain`.
- `omamori.resolver.Resolver.lookup` turns a decoded query into its response.
- `omamori.server` provides:
  - `handle_datagram`, which answers one packet.
  - `serve_udp`, which runs the server loop.
  - `Controller`, which reacts to `omamori.events.Event`s: start or stop the
    server, update the config, and add to or delete from the site list.

## What it does not do

- There is no DNS-over-HTTPS server. The certificate and key that are created
  are not used by anything in the package, and DoH start and stop events are
  ignored.
- There is no graphical interface, only the console command.
- It answers over UDP only. TCP queries are not served.