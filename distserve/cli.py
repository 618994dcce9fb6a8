"""
Command line entry point: load config, snapshot the bundle, serve until interrupted.
"""

import asyncio
import logging
import sys
from optparse import OptionParser

from configobj import ConfigObjError

import distserve
from distserve.inc.assets import AssetStoreError
from distserve.inc.webserver import DistWebServer

log = logging.getLogger("distserve")

def optsargs(argv=None):
    p = OptionParser(usage="%prog [options]", version=f"%prog {distserve.__version__}")
    p.add_option('-c', '--config', dest='config', default=None, help='INI file (default: $DISTSERVE_CONFIG or ~/.config/distserve.ini)')
    p.add_option('-H', '--host', dest='host', default=None, help='listen address')
    p.add_option('-p', '--port', dest='port', type='int', default=None, help='listen port')
    p.add_option('--policy', dest='policy', default=None, help='cache policy: extension, prefix or none')
    p.add_option('--bundle', dest='bundle', default=None, help='directory holding the dist/ bundle')
    return p.parse_args(argv)

async def serve(runtime) -> None:
    server = DistWebServer(runtime.store, runtime.settings, policy=runtime.policy)
    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()

def start(argv=None):
    options, _args = optsargs(argv)
    try:
        runtime = distserve.initialize(options.config, {
            "WEB.listen_host": options.host,
            "WEB.listen_port": options.port,
            "WEB.bundle_dir": options.bundle,
            "CACHE.policy": options.policy,
        })
    except ConfigObjError as e:
        # raised while reading the INI, before logging is set up
        print(f"distserve: cannot read config: {e}", file=sys.stderr)
        sys.exit(1)
    except (AssetStoreError, ValueError) as e:
        log.error(f"cannot start: {e}")
        sys.exit(1)

    try:
        asyncio.run(serve(runtime))
    except KeyboardInterrupt:
        log.info("stopped by user")
    except OSError as e:
        log.error(f"cannot listen: {e}")
        sys.exit(1)

if __name__ == "__main__":
    start()
