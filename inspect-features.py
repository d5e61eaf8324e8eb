import argparse
import logging
from pathlib import Path

from featuredb import ioutils
from featuredb.config import LOG_FORMAT, StoreSettings
from featuredb.store import FeatureStore

if __name__ == '__main__':
    parser = argparse.ArgumentParser(prog='inspect-features',
                                     description='Print the columns, example count and source files of feature stores.')
    parser.add_argument('store_list',
                        nargs='+',
                        help='feature store (.h5) files')
    parser.add_argument('--files',
                        action='store_true',
                        default=False,
                        help='also list the source files of each store')
    parser.add_argument('--head',
                        type=int,
                        default=0,
                        help='print the first HEAD examples')

    args = parser.parse_args()
    logging.basicConfig(level=StoreSettings().log_level, format=LOG_FORMAT)

    for store_path in args.store_list:
        store_path = Path(store_path)
        with FeatureStore.open(store_path, None, mode='r') as store:
            print(f'{store_path}: {store.example_count} examples, chunk size {store.chunk_size}')
            for spec in store.schema:
                print(f'  {spec.name:<24} {spec.kind.value:<8} {spec.width}')
            print(f'  {len(store.file_list)} source files')

            if store.configuration is not None:
                print(store.configuration.to_json())

            if args.files:
                for name in sorted(store.file_list):
                    print(f'    {name}')

            for row in store.read_rows(0, min(args.head, store.example_count)):
                print(f'    {row.file_name}@{row.offset} label={row.label}')

        counts = ioutils.get_counts(store_path)
        logging.debug(f'dataset row counts: {counts}')
