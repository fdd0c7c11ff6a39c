# PlatformIO extra_script: embed the MPFS image as a C array before building
import os
import sys
import logging
from SCons.Script import DefaultEnvironment, Exit

env = DefaultEnvironment()
logging.basicConfig(level=logging.INFO, format='[embed_mpfs_image] %(message)s')


def embed_image(mpfs2c, project_dir):
    settings = mpfs2c.hook_settings(project_dir)
    image_path = os.path.join(env.subst("$BUILD_DIR"), settings['image'])
    out_path = os.path.join(env.subst("$PROJECTSRC_DIR"), settings['output'])
    force = mpfs2c.env_flag('EMBED_MPFS_FORCE')

    if not os.path.exists(image_path):
        logging.info(f"MPFS image not found: {image_path}")
    elif not mpfs2c.needs_update(image_path, out_path, force=force):
        logging.info(f"Skipping unchanged image: {image_path}")
    else:
        mpfs2c.convert(mpfs2c.Config(
            input_path=image_path,
            output_path=out_path,
            max_size=settings['max_size'],
            var_name=settings['var_name'],
        ))


# Skip script if PlatformIO target is erase or clean
pio_targets = os.environ.get('PIOENV', '') + ' ' + ' '.join(sys.argv)
if any(x in pio_targets for x in ['erase', 'clean']):
    logging.info('Skipping for erase/clean target.')
else:
    project_dir = env.subst("$PROJECT_DIR")
    sys.path.insert(0, os.path.join(project_dir, "scripts"))
    import mpfs2c

    try:
        embed_image(mpfs2c, project_dir)
    except mpfs2c.Mpfs2cError as e:
        logging.error(f"ERROR: {e}")
        Exit(1)
