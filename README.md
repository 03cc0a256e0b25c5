# tlvsec

A small secure channel over TCP between one server and one client. Messages
are framed as nested type-length-value (TLV) records. A connection has two
phases:

1. **Handshake.** The client sends a `CLIENT_HELLO` that carries a protocol
   version, a 32-byte nonce and an ephemeral P-256 public key. The server
   replies with a `SERVER_HELLO` that carries its own nonce, its certificate,
   its ephemeral public key and an ECDSA-SHA256 signature made with its
   identity key over the client hello, its nonce and its public key. The
   client checks the certificate's signature against a certificate authority
   key, the certificate's lifetime, its DNS name against the hostname it was
   given, and the handshake signature. Both sides then derive a shared secret
   with ECDH, and from that secret derive an encryption key and a MAC key
   with HKDF-SHA256, salted with the two nonces.
2. **Data.** Each side reads whatever is ready on standard input, up to 1024
   bytes at a time, and sends it as a `DATA` record: an AES-256-CBC
   ciphertext with a random IV and an HMAC-SHA256 over both. Records that
   arrive have their MAC checked before they are decrypted, and the plaintext
   is written to standard output.

## Installation

```
pip install .
```

The test suite needs the `test` extra:

```
pip install ".[test]"
```

## Files

All keys are DER-encoded. Private keys are EC P-256 keys; public keys are
SubjectPublicKeyInfo.

| File                  | Used by | Contents                                  |
|-----------------------|---------|-------------------------------------------|
| `server_key.bin`      | server  | the server's identity private key         |
| `server_cert.bin`     | server  | the certificate made by `tlvsec-gen-cert` |
| `ca_public_key.bin`   | client  | the certificate authority's public key    |

The commands look for these files in the current working directory. The
client loads `ca_public_key.bin` before it connects. The server loads
`server_cert.bin` once a client has connected, and `server_key.bin` when it
signs its hello.

## Making a certificate

```
tlvsec-gen-cert server_key.bin ca_key.bin localhost server_cert.bin
```

The arguments, in order, are the server's private key, the CA's private key,
the DNS name to certify, and the output file. Two more optional arguments set
`not_before` and `not_after` as Unix timestamps (the leading digits of each
are read; an argument with none counts as 0). By default the certificate is
valid from now for one year. The command exits with 1 on a usage error or
when `not_after` is earlier than `not_before`, and with 255 when a key file
is missing or unreadable.

## Running

Start the server on a port. It listens on all IPv4 interfaces, accepts one
client and stops when that client disconnects:

```
tlvsec-server 8080
```

Connect a client to it:

```
tlvsec-client localhost 8080
```

Whatever you type into either side appears on the other side's standard
output. Any extra argument after the usual ones (`tlvsec-server 8080 x`,
`tlvsec-client localhost 8080 x`) makes that side send a deliberately
corrupted MAC, which is useful for checking the peer's rejection path.
Progress messages such as `SEND CLIENT HELLO` and `received N bytes` go to
standard error.

## Exit codes

| Code | Meaning                                                     |
|------|-------------------------------------------------------------|
| 1    | usage error; bad certificate (bad CA signature, expired or not yet valid); client could not connect |
| 2    | the certificate's DNS name does not match the hostname      |
| 3    | the handshake signature does not verify                     |
| 5    | a `DATA` record's MAC does not verify                       |
| 6    | a malformed message or field                                |
| 15   | the server could not bind, listen or accept                 |
| 255  | a missing or unreadable key or certificate file; an unresolvable hostname |

On SIGINT, SIGTERM or SIGQUIT a command prints `Received signal N` and exits
with that signal's number.

## Library use

The pieces can also be used directly:

- `tlvsec.tlv`: the `Tlv` record (a `type`, either a `value` or up to ten
  `children`, and a computed `length`) with `add`, `serialize` and `find`,
  plus `parse_tlv` and `format_tlv_bytes`. The record types are listed in
  `TlvType`. Bad input raises `MalformedTlvError`.
- `tlvsec.crypto`: key loading (`load_private_key`, `load_ca_public_key`,
  `load_public_key_der`, `load_certificate`) and generation
  (`generate_private_key`, `public_key_der`), `derive_secret`,
  `derive_keys`, `sign`, `verify`, `generate_nonce`, `encrypt_data`,
  `decrypt_cipher` and `hmac_sha256`. A missing or unreadable file raises
  `KeyFileError`.
- `tlvsec.channel_io.StdIO`: non-blocking reads from standard input and
  flushed writes to standard output; other binary streams can be passed in.
- `tlvsec.security`: `SecureSession`, the state machine that drives one side
  of a connection through its `State` values. `input(capacity)` returns the
  next message to send (or `b""`), and `output(data)` consumes a received
  message. The file paths and the I/O object are constructor arguments. A
  failed check raises `HandshakeError`, whose `exit_code` is one of the codes
  above. `parse_lifetime_window` and `enforce_lifetime_valid` check a
  certificate's `LIFETIME` record.
- `tlvsec.gen_cert.build_certificate`: builds an encoded certificate in code.
- `tlvsec.client.run_client` / `resolve_hostname` and
  `tlvsec.server.run_server`: the loops behind the commands.

## What it does not do

- There is no command for making key files; create P-256 keys in DER form
  with other tools, or with `tlvsec.crypto.generate_private_key` in code.
- The server handles a single client per run, and only IPv4 is supported.
- A TCP read is treated as one whole message; records are not reassembled
  across reads.