import uvicorn
import argparse
import asyncio
from pathlib import Path
from src.core.services.container import build_services
from src.config.settings import settings
from src.utils.logging import logger

async def init_db():
    """Create the relational tables and the vector index."""
    services = build_services()
    await services.start(init_schema=True)
    await services.stop()

async def ingest(text: str, source_url: str = None):
    """Run one ingestion workflow to completion in the foreground.

    Args:
        text (str): Raw text to split, embed and index
        source_url (str, optional): Where the text came from
    """
    services = build_services()
    await services.start(init_schema=False)
    try:
        instance_id = await services.knowledge_service.ingest(text, source_url)
        await services.dispatcher.drain()
        logger.info(f"Ingestion {instance_id} finished")
    finally:
        await services.stop()

async def resume():
    """Finish ingestion workflows interrupted by a previous process."""
    services = build_services()
    await services.start(init_schema=False)
    try:
        count = await services.dispatcher.resume_incomplete()
        logger.info(f"Resuming {count} ingestion workflows")
        await services.dispatcher.drain()
    finally:
        await services.stop()

async def delete_chunk(chunk_id: int):
    services = build_services()
    await services.start(init_schema=False)
    try:
        await services.knowledge_service.delete_chunk(chunk_id)
    finally:
        await services.stop()

async def set_profile(info: str, user_id: str = None):
    services = build_services()
    await services.start(init_schema=False)
    try:
        profile = await services.knowledge_service.update_profile(info, user_id)
        logger.info(f"Updated profile for {profile.user_id}")
    finally:
        await services.stop()

if __name__ == "__main__":

    parser = argparse.ArgumentParser(description='Personal Knowledge Assistant')
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Server command
    server_parser = subparsers.add_parser('serve', help='Run the API server')
    server_parser.add_argument('--host', default='0.0.0.0', help='Host to run the server on')
    server_parser.add_argument('--port', type=int, default=8000, help='Port to run the server on')

    subparsers.add_parser('init-db', help='Create database tables and the vector index')

    ingest_parser = subparsers.add_parser('ingest', help='Add text to the knowledge base')
    source = ingest_parser.add_mutually_exclusive_group(required=True)
    source.add_argument('--text', help='Text to ingest')
    source.add_argument('--file', help='Path of a UTF-8 text file to ingest')
    ingest_parser.add_argument('--source-url', default=None, help='Provenance URL stored with each chunk')

    subparsers.add_parser('resume', help='Resume interrupted ingestion workflows')

    delete_parser = subparsers.add_parser('delete-chunk', help='Delete a chunk and its vector')
    delete_parser.add_argument('chunk_id', type=int)

    profile_parser = subparsers.add_parser('set-profile', help='Create or replace a user profile')
    profile_parser.add_argument('info', help='Free-form profile text')
    profile_parser.add_argument('--user-id', default=settings.DEFAULT_USER_ID)

    args = parser.parse_args()

    if args.command == 'serve':
        uvicorn.run("src.api.app:app", host=args.host, port=args.port)
    elif args.command == 'init-db':
        asyncio.run(init_db())
    elif args.command == 'ingest':
        text = args.text if args.text is not None else Path(args.file).read_text(encoding='utf-8')
        asyncio.run(ingest(text, args.source_url))
    elif args.command == 'resume':
        asyncio.run(resume())
    elif args.command == 'delete-chunk':
        asyncio.run(delete_chunk(args.chunk_id))
    elif args.command == 'set-profile':
        asyncio.run(set_profile(args.info, args.user_id))
    else:
        parser.print_help()
