import setuptools

with open("README.md", "r") as fh:
    long_description = fh.read()

setuptools.setup(
    name="tracker",
    version="0.1.0",
    description="Location reporting client with offline caching and signed uploads",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(exclude=["tests", "tests.*"]),
    python_requires='>=3.7',
    install_requires=[
        'gpiozero',
        'pyserial',
        'pynmea2',
        'peewee',
        'requests'
    ],
    extras_require={
        'test': ['pytest']
    },
    entry_points = {
        'console_scripts': ['tracker=tracker.start:__main__', 'trackserv=tracker.server:__main__'],
    }
)
