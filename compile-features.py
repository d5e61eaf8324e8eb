import argparse
import logging
from pathlib import Path

from tqdm import tqdm

from featuredb.compiler import (
    CompileJob,
    FeatureCompiler,
    rows_from_npz,
    schema_from_npz,
    store_path_for,
)
from featuredb.config import LOG_FORMAT, ExtractionConfig, StoreSettings
from featuredb.schema import Schema


def get_files_from_directory_with_extensions(dir: Path, extensions: list[str]):
    return (x for ext in extensions for x in dir.rglob(ext) if x.is_file())


def make_job(npz_path: Path):
    return CompileJob(output_path=store_path_for(npz_path),
                      rows=lambda: rows_from_npz(npz_path))


if __name__ == '__main__':
    settings = StoreSettings()

    parser = argparse.ArgumentParser(prog='compile-features',
                                     description='Compile pre-extracted example features (.npz) into chunked feature stores (.h5), one per input file.')
    parser.add_argument('input_dir_list',
                        nargs='+',
                        help='folders searched recursively for .npz feature files')

    parser.add_argument('--config',
                        required=False,
                        type=str,
                        help='extraction configuration (JSON) used to derive the store columns')

    parser.add_argument('--chunk-size',
                        required=False,
                        type=int,
                        default=settings.chunk_size,
                        help='number of examples written to disk at a time')

    parser.add_argument('--num-workers',
                        required=False,
                        type=int,
                        default=settings.num_workers,
                        help='number of stores compiled concurrently (0 uses all cores)')

    parser.add_argument('--overwrite',
                        required=False,
                        action='store_true',
                        default=False,
                        help='overwrite existing stores instead of skipping them')

    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    logger = logging.getLogger()

    assert all(Path(x).is_dir() for x in args.input_dir_list), "All values for input_dir_list must be directories"

    input_files = sorted(set(
        x for d in args.input_dir_list
        for x in get_files_from_directory_with_extensions(Path(d), ['*.npz'])
    ))
    if len(input_files) == 0:
        raise ValueError(f'no .npz files found in {args.input_dir_list}')

    configuration = None
    if args.config is not None:
        configuration = ExtractionConfig.from_json_file(args.config)
        schema = Schema.from_config(configuration)
    else:
        schema = schema_from_npz(input_files[0])
    logger.info(f'Compiling {len(input_files)} files with {schema}')

    compiler = FeatureCompiler(schema,
                               chunk_size=args.chunk_size,
                               overwrite=args.overwrite,
                               num_workers=args.num_workers,
                               configuration=configuration,
                               settings=settings)

    with tqdm(total=len(input_files)) as pbar:
        results = compiler.compile((make_job(x) for x in input_files),
                                   progress=lambda _: pbar.update(1))

    for result in results:
        if result.error is not None:
            logger.error(f'{result.output_path}: {result.error}')
        elif result.dropped_count > 0:
            logger.info(f'{result.output_path}: {result.example_count} examples, '
                        f'{result.dropped_count} trailing examples did not fill a chunk')

    completed = sum(1 for x in results if not x.skipped and x.error is None)
    skipped = sum(1 for x in results if x.skipped)
    failed = sum(1 for x in results if x.error is not None)
    print(f'{completed} compiled, {skipped} skipped, {failed} failed')
