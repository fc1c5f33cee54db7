from setuptools import setup, find_packages

setup(
    name='sdm-background',
    version='0.1.0',
    description='Background point generation for presence-only species distribution modelling',
    author='Matthew Whittle',
    author_email='matthewjwhittle@gmail.com',
    url='https://github.com/matthewjwhittle/sheffield-bats',
    packages=find_packages(include=['sdm_background', 'sdm_background.*']),
    python_requires='>=3.11',
    install_requires=[
        'numpy',
        'pandas',
        'xarray',
        'rioxarray',
        'rasterio',
        'geopandas',
        'shapely',
        'pyarrow',
        'scipy',
        'scikit-learn',
        'pyyaml',
        'pyhere',
        'typer',
        'typing_extensions',
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'sdm-background=sdm_background.cli:app',
        ],
    },
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Intended Audience :: Science/Research',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
    ],
)
