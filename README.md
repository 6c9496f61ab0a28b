# pelzkeys

Building blocks for a small key service:

- AES key wrap without padding (RFC 3394),
- in-memory tables of data keys and key-server certificates,
- helpers for the named-pipe messages between a command tool and the
  service, and a handler that turns those messages into table operations,
- the `pelz` command, a client that sends requests to a running service.

## Installation

```
pip install .
```

For running the test suite:

```
pip install ".[test]"
pytest
```

## The `pelz` command

```
pelz --help
```

Running `pelz` with no arguments prints the same help text. It accepts
these keywords:

```
pelz exit
pelz keytable remove <id>
pelz keytable remove --all
pelz keytable list
pelz pki load cert <path>
pelz pki load private <path>
pelz pki cert list
pelz pki remove <CN>
pelz pki remove private
pelz pki remove --all
pelz seal <path> [-t] [-o <output path>]
```

Options: `-h`/`--help`, `-d`/`--debug` (debug logging), `-a`/`--all`,
`-t`/`--tpm` and `-o`/`--output` (the last is accepted only with `seal`).
A malformed command prints the relevant help section and exits with 1.

Each command other than `seal` creates a named pipe
`/tmp/pelzInterface<pid>`, writes a request such as
`pelz 4 /tmp/pelzInterface1234` to the service pipe `/tmp/pelzService`,
and prints the service's reply lines until it reads a line `END`. It
gives up after five seconds without an answer, and removes its own pipe
when done. The command exits with 1 when the service cannot be reached.

## Library

### Key wrap (`pelzkeys.keywrap`)

```python
from pelzkeys.keywrap import wrap, unwrap, KeyWrapError

kek = bytes(range(16))          # 16-, 24- or 32-byte key-encryption key
wrapped = wrap(kek, b"0123456789abcdef")
assert unwrap(kek, wrapped) == b"0123456789abcdef"
```

`wrap` needs at least 16 bytes of input in a multiple of 8 and returns
8 bytes more; `unwrap` needs at least 24 bytes in a multiple of 8 and
returns 8 bytes fewer. Bad sizes, bad keys and failed integrity checks
raise `KeyWrapError` (a `ValueError`).

### Tables (`pelzkeys.tables`)

```python
from pelzkeys.tables import KeyTable, NoMatchError

keys = KeyTable()
keys.add_key(b"file:/srv/keys/key1.txt", b"placeholder")
print(keys.count(), keys.ids())
keys.delete(b"file:/srv/keys/key1.txt")
try:
    keys.lookup(b"file:/srv/keys/key1.txt")
except NoMatchError:
    print("gone")
```

- `KeyTable.add_key`, `get_key`, and `add_from_handle(key_id, handle, store)`,
  which takes the data out of an `UnsealedStore`.
- `ServerTable.add_cert(server_id, cert_der)` and `get_cert`; the
  certificate bytes are stored as given.
- Both share `lookup` (returns the entry's position), `delete`, `destroy`,
  `ids`, `count` and `mem_size`, and support `len`, iteration over ids
  and `in`. Identifiers may be `bytes` or `str`.
- `UnsealedStore.put(data)` returns a handle; `retrieve(handle)` hands the
  data out once and raises `RetrieveError` afterwards.
- A table refuses new entries with `TableMemoryError` once its accounted
  size reaches `max_mem_size` (1,000,000 by default). Missing ids raise
  `NoMatchError`, which is both a `TableError` and a `KeyError`.

Deleted and destroyed keys are overwritten with zeros.

### Buffers (`pelzkeys.charbuf`)

`compare`, `find_char`, `copy_from` and `secure_clear` work on byte
buffers, treating `None` as empty.

### Pipes (`pelzkeys.pelz_io`, `pelzkeys.cmd_interface`)

`pelz_io` offers `tokenize_pipe_message`, `get_file_ext` (recognises
`.nkl` and `.ski`), `file_check`, `open_read_pipe`, `open_write_pipe`,
`write_to_pipe`, `write_to_pipe_fd`, `read_from_pipe`, `read_listener` and
`remove_pipe`; failures raise `PipeError`.

`PipeMessageHandler(key_table, server_table, ...)` carries out a
tokenised request and returns a `ParseResponse`: command 1 removes the
service pipe and returns `EXIT`, 2/3 remove one or all keys, 4/7 report
whether the key or server table has entries, 5/6 load a certificate or
private key, 8/9 remove one or all certificates, 10 removes the private
key. Loading and private-key handling go through the `load_file`,
`add_cert`, `add_private` and `remove_private` callables you pass in.

`cmd_interface` classifies command words with `check_arg` (returning a
`CmdArg`), builds requests with `format_arg_message` and
`format_list_message`, and sends them with `msg_arg` and `msg_list`.

## What this package does not do

- It contains no key service process: nothing listens on `/tmp/pelzService`
  and serves requests. `PipeMessageHandler` does the work for one request
  but has to be driven by your own loop.
- `pelz seal` does not seal anything; no sealing backend is included, so
  the command logs an error and exits with 1.
- It does not seal or unseal files, parse or verify X509 certificates,
  hold a private key, or fetch keys from remote key servers. Those steps
  are left to the callables given to `PipeMessageHandler`.