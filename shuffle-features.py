import argparse
import logging
from pathlib import Path

from tqdm import tqdm

from featuredb.config import LOG_FORMAT, StoreSettings
from featuredb.store import FeatureStore

if __name__ == '__main__':
    settings = StoreSettings()

    parser = argparse.ArgumentParser(prog='shuffle-features',
                                     description='Randomize the order of the examples in feature stores, in place.',
                                     epilog='Memory use is bounded by twice the shuffle chunk size.')
    parser.add_argument('store_list',
                        nargs='+',
                        help='feature store (.h5) files to shuffle')

    parser.add_argument('--chunk-size',
                        required=False,
                        type=int,
                        default=settings.shuffle_chunk_size,
                        help='number of examples in each of the two windows exchanged per step')

    parser.add_argument('--passes',
                        required=False,
                        type=int,
                        default=settings.shuffle_passes,
                        help='number of sweeps over each store')

    parser.add_argument('--seed',
                        required=False,
                        type=int,
                        default=settings.shuffle_seed,
                        help='seed for the random number generator')

    parser.add_argument('--sync-every-step',
                        required=False,
                        action='store_true',
                        default=settings.sync_every_step,
                        help='flush to disk after every step (slower, loses less on a crash)')

    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    logger = logging.getLogger()

    for store_path in args.store_list:
        store_path = Path(store_path)
        if not store_path.is_file():
            logger.error(f'"{store_path}" is not a file, skipping')
            continue

        with FeatureStore.open(store_path, None) as store, tqdm(total=100, desc=store_path.name) as pbar:
            def update(fraction):
                pbar.n = round(100 * fraction)
                pbar.refresh()

            steps = store.shuffle(args.chunk_size,
                                  passes=args.passes,
                                  progress=update,
                                  seed=args.seed,
                                  sync_every_step=args.sync_every_step)
        logger.info(f'Shuffled {store_path} in {steps} steps')
